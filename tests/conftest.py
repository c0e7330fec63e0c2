"""Shared fixtures for grcscope tests."""

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone

import pytest

from grcscope.compliance.loader import build_catalog
from grcscope.core.engine import ComplianceEngine
from grcscope.stores.memory import MemoryStore

SAMPLE_FEED = {
    "domains": [
        {"id": "access_control", "title": "Access Control"},
        {"id": "data_protection", "title": "Data Protection"},
    ],
    "controls": [
        {
            "id": "AC-001",
            "domain": "access_control",
            "title": "Multi-factor authentication",
            "question": "Is MFA enforced for all users?",
            "risk_level": "critical",
            "mappings": [
                {"framework": "SOC2", "clause": "CC6.1"},
                {"framework": "HIPAA", "clause": "164.312(a)(2)(i)"},
            ],
        },
        {
            "id": "AC-002",
            "domain": "access_control",
            "title": "Access reviews",
            "risk_level": "high",
            "mappings": [{"framework": "SOC2", "clause": "CC6.2"}],
        },
        {
            "id": "DP-001",
            "domain": "data_protection",
            "title": "Encryption at rest",
            "risk_level": "medium",
            "mappings": [
                {"framework": "SOC2", "clause": "CC6.1"},
                {"framework": "PCI_DSS", "clause": "3.5.1"},
            ],
        },
        {
            "id": "DP-002",
            "domain": "data_protection",
            "title": "Data classification",
            "risk_level": "low",
            "mappings": [
                {"framework": "HIPAA", "clause": "164.312(a)(1)"},
                {"framework": "PCI_DSS", "clause": "3.5.1.a"},
                {"framework": "SOC2", "clause": "CC9.9"},
            ],
        },
    ],
    "frameworks": [
        {
            "id": "SOC2",
            "name": "SOC 2",
            "version": "2017",
            "requirements": [
                {
                    "id": "CC6",
                    "title": "Logical and Physical Access",
                    "children": [
                        {"id": "CC6.1", "title": "Logical access security"},
                        {"id": "CC6.2", "title": "User registration"},
                        {"id": "CC6.3", "title": "Role-based access"},
                    ],
                },
            ],
        },
        {
            "id": "HIPAA",
            "name": "HIPAA",
            "version": "2013",
            "requirements": [
                {
                    "id": "164.312",
                    "title": "Technical safeguards",
                    "children": [
                        {
                            "id": "164.312(a)(1)",
                            "title": "Access control",
                            "children": [
                                {"id": "164.312(a)(2)(i)", "title": "Unique user identification"},
                                {
                                    "id": "164.312(a)(2)(iv)",
                                    "title": "Encryption and decryption",
                                    "required": False,
                                },
                            ],
                        },
                    ],
                },
            ],
        },
        {
            "id": "PCI_DSS",
            "name": "PCI DSS",
            "version": "4.0",
            "requirement_paths": [
                {"id": "3.5.1", "title": "PAN is unreadable wherever stored"},
                {"id": "4.2.1", "title": "Strong cryptography for PAN in transit"},
            ],
        },
    ],
}


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 0, hours: int = 0) -> None:
        self.now = self.now + timedelta(days=days, hours=hours)


@pytest.fixture
def sample_feed() -> dict:
    return copy.deepcopy(SAMPLE_FEED)


@pytest.fixture
def catalog(sample_feed: dict):
    return build_catalog(sample_feed)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(catalog, store: MemoryStore, clock: FixedClock) -> ComplianceEngine:
    return ComplianceEngine(catalog, store, clock=clock)


@pytest.fixture
def answered_engine(engine: ComplianceEngine) -> ComplianceEngine:
    """Engine whose default tenant has answered every sample control."""
    engine.answer("acme", "AC-001", "yes")
    engine.answer("acme", "AC-002", "partial")
    engine.answer("acme", "DP-001", "no")
    engine.answer("acme", "DP-002", "na")
    return engine
