"""GRC Scope - compliance scoring and requirement-mapping engine."""

__version__ = "1.0.0"
