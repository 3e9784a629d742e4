"""
Shared fixtures: in-memory stores on a controllable clock and mocked
provider/matcher collaborators.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from voicegate.clients.memory import InMemoryAuditSink, InMemoryProfileRepository, InMemorySessionStore
from voicegate.services.attempt_ledger import AttemptLedger
from voicegate.services.orchestrator import VerificationOrchestrator
from voicegate.services.risk_scorer import RiskScorer

# 12:00 in Lima, outside the quiet hours
NOON_LIMA = datetime(2024, 3, 1, 17, 0, tzinfo=timezone.utc)

TEMPLATE = b"\x01\x02\x03\x04" * 192


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def profiles():
    return InMemoryProfileRepository()


@pytest.fixture
def audit():
    return InMemoryAuditSink()


@pytest.fixture
def matcher():
    matcher = AsyncMock()
    matcher.match = AsyncMock(return_value=0.9)
    return matcher


@pytest.fixture
def template_generator():
    generator = AsyncMock()
    generator.generate = AsyncMock(return_value=TEMPLATE)
    return generator


@pytest.fixture
def call_provider():
    provider = AsyncMock()
    provider.place_call = AsyncMock(return_value="CA0123456789abcdef")
    return provider


@pytest.fixture
def notifier():
    channel = AsyncMock()
    channel.send = AsyncMock(return_value=None)
    return channel


@pytest.fixture
def ledger(store):
    return AttemptLedger(store, threshold=3, lockout_ttl_seconds=3600)


@pytest.fixture
def orchestrator(store, profiles, audit, matcher, template_generator, call_provider, notifier, ledger):
    return VerificationOrchestrator(
        sessions=store,
        profiles=profiles,
        matcher=matcher,
        template_generator=template_generator,
        audit=audit,
        call_provider=call_provider,
        notifier=notifier,
        risk_scorer=RiskScorer("America/Lima", clock=lambda: NOON_LIMA),
        ledger=ledger,
        match_threshold=0.85,
        session_ttl_seconds=3600,
        challenge_ttl_seconds=120,
        confirmation_ttl_seconds=300,
        public_base_url="https://voice.example.com",
        origin_number="+15005550006",
        company_name="Redessip Perú",
        clock=lambda: NOON_LIMA
    )
