"""
Tests for the Supabase profile repository and audit sink.
"""

import threading
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from postgrest.exceptions import APIError

from voicegate.clients.base import StoreUnavailable
from voicegate.clients.supabase_client import (
    DatabaseManager,
    SupabaseAuditSink,
    SupabaseClient,
    SupabaseProfileRepository
)
from voicegate.models.internal_models import AuditAction, AuditEvent, IdentityProfile, SecurityTier


@pytest.fixture
def supabase_client():
    client = Mock(spec=SupabaseClient)
    client.client = MagicMock()
    return client


@pytest.fixture
def table(supabase_client):
    return supabase_client.client.table.return_value


@pytest.fixture
def sample_profile():
    return IdentityProfile(
        user_id="3f2a9c1e-0000-4000-8000-000000000001",
        phone_number="+51999888777",
        voice_template=b"\x00\x01\x02\x03",
        enrolled_at=datetime(2024, 3, 1, 17, 0, tzinfo=timezone.utc),
        failure_count=2,
        security_tier=SecurityTier.HIGH,
        metadata={"carrier": "Movistar"}
    )


class TestSupabaseProfileRepository:

    def test_row_round_trip(self, sample_profile):
        row = SupabaseProfileRepository.to_row(sample_profile)

        assert row["voice_print"] == "AAECAw=="
        assert row["verification_attempts"] == 2
        assert row["security_level"] == "HIGH"
        assert SupabaseProfileRepository.from_row(row) == sample_profile

    def test_from_row_accepts_zulu_timestamps(self):
        profile = SupabaseProfileRepository.from_row({
            "user_id": "u1",
            "phone_number": "+51999888777",
            "voice_print": "AAECAw==",
            "enrollment_date": "2024-03-01T17:00:00Z",
            "last_verification": None,
            "verification_attempts": None,
            "security_level": None,
            "metadata": None,
        })

        assert profile.enrolled_at.tzinfo is not None
        assert profile.failure_count == 0
        assert profile.security_tier == SecurityTier.MEDIUM
        assert profile.metadata == {}

    @pytest.mark.asyncio
    async def test_find_by_phone_number(self, supabase_client, table, sample_profile):
        query = table.select.return_value.eq.return_value
        query.execute.return_value = Mock(data=[SupabaseProfileRepository.to_row(sample_profile)])
        repository = SupabaseProfileRepository(supabase_client)

        profile = await repository.find_by_phone_number("+51999888777")

        assert profile == sample_profile
        supabase_client.client.table.assert_called_with("voice_profiles")
        table.select.return_value.eq.assert_called_once_with("phone_number", "+51999888777")

    @pytest.mark.asyncio
    async def test_find_missing_profile(self, supabase_client, table):
        table.select.return_value.eq.return_value.execute.return_value = Mock(data=[])
        repository = SupabaseProfileRepository(supabase_client)

        assert await repository.find_by_phone_number("+51999888777") is None

    @pytest.mark.asyncio
    async def test_save_upserts_on_phone_number(self, supabase_client, table, sample_profile):
        table.upsert.return_value.execute.return_value = Mock(data=[{"user_id": sample_profile.user_id}])
        repository = SupabaseProfileRepository(supabase_client)

        await repository.save(sample_profile)

        row = table.upsert.call_args.args[0]
        assert row["phone_number"] == "+51999888777"
        assert table.upsert.call_args.kwargs["on_conflict"] == "phone_number"

    @pytest.mark.asyncio
    async def test_api_error_maps_to_store_unavailable(self, supabase_client, table):
        table.select.return_value.eq.return_value.execute.side_effect = APIError({"message": "boom"})
        repository = SupabaseProfileRepository(supabase_client)

        with pytest.raises(StoreUnavailable):
            await repository.find_by_phone_number("+51999888777")

    @pytest.mark.asyncio
    async def test_queries_run_off_the_event_loop_thread(self, supabase_client, table, sample_profile):
        threads = []

        def execute():
            threads.append(threading.get_ident())
            return Mock(data=[SupabaseProfileRepository.to_row(sample_profile)])

        table.select.return_value.eq.return_value.execute.side_effect = execute
        table.upsert.return_value.execute.side_effect = execute
        repository = SupabaseProfileRepository(supabase_client)

        await repository.find_by_phone_number("+51999888777")
        await repository.save(sample_profile)

        assert len(threads) == 2
        assert threading.get_ident() not in threads

    @pytest.mark.asyncio
    async def test_health_check_delegates_to_client(self, supabase_client):
        supabase_client.health_check = AsyncMock(return_value=False)
        repository = SupabaseProfileRepository(supabase_client)

        assert await repository.health_check() is False
        supabase_client.health_check.assert_awaited_once()


class TestSupabaseAuditSink:

    @pytest.fixture
    def event(self):
        return AuditEvent(
            action=AuditAction.VERIFICATION_FAILURE,
            result="FAILURE",
            session_id="sess-1",
            phone_number="+51999888777",
            risk_score=30,
            ip_address="203.0.113.9"
        )

    @pytest.mark.asyncio
    async def test_append_inserts_row(self, supabase_client, table, event):
        table.insert.return_value.execute.return_value = Mock(data=[{"id": 1}])
        sink = SupabaseAuditSink(supabase_client)

        await sink.append(event)

        supabase_client.client.table.assert_called_with("audit_logs")
        row = table.insert.call_args.args[0]
        assert row["action"] == "VERIFICATION_FAILURE"
        assert row["risk_score"] == 30
        assert row["ip_address"] == "203.0.113.9"

    @pytest.mark.asyncio
    async def test_append_retries_then_succeeds(self, supabase_client, table, event):
        table.insert.return_value.execute.side_effect = [
            APIError({"message": "timeout"}),
            Mock(data=[{"id": 1}]),
        ]
        sink = SupabaseAuditSink(supabase_client, max_retries=3, base_delay=0)

        await sink.append(event)

        assert table.insert.return_value.execute.call_count == 2

    @pytest.mark.asyncio
    async def test_append_gives_up_after_max_retries(self, supabase_client, table, event):
        table.insert.return_value.execute.side_effect = APIError({"message": "down"})
        sink = SupabaseAuditSink(supabase_client, max_retries=3, base_delay=0)

        with pytest.raises(StoreUnavailable):
            await sink.append(event)

        assert table.insert.return_value.execute.call_count == 3

    @pytest.mark.asyncio
    async def test_insert_runs_off_the_event_loop_thread(self, supabase_client, table, event):
        threads = []

        def execute():
            threads.append(threading.get_ident())
            return Mock(data=[{"id": 1}])

        table.insert.return_value.execute.side_effect = execute
        sink = SupabaseAuditSink(supabase_client)

        await sink.append(event)

        assert threads and threading.get_ident() not in threads


class TestSupabaseClient:

    def test_unconfigured_client_raises(self):
        client = SupabaseClient(url="", key="")
        client._url = ""
        client._key = ""

        with pytest.raises(StoreUnavailable):
            client.client

    @patch("voicegate.clients.supabase_client.create_client")
    def test_client_created_lazily(self, mock_create_client):
        client = SupabaseClient(url="https://project.supabase.co", key="anon")

        assert client.client is mock_create_client.return_value
        assert client.client is mock_create_client.return_value
        mock_create_client.assert_called_once_with("https://project.supabase.co", "anon")

    def test_database_manager_wires_repositories(self, supabase_client):
        manager = DatabaseManager(supabase_client)

        assert manager.profiles.client is supabase_client
        assert manager.audit.client is supabase_client

    @pytest.mark.asyncio
    @patch("voicegate.clients.supabase_client.create_client")
    async def test_health_check(self, mock_create_client):
        query = mock_create_client.return_value.table.return_value.select.return_value.limit.return_value
        client = SupabaseClient(url="https://project.supabase.co", key="anon")

        assert await client.health_check() is True
        query.execute.assert_called_once()
        mock_create_client.return_value.table.assert_called_with("voice_profiles")

    @pytest.mark.asyncio
    @patch("voicegate.clients.supabase_client.create_client")
    async def test_health_check_reports_failure(self, mock_create_client):
        query = mock_create_client.return_value.table.return_value.select.return_value.limit.return_value
        query.execute.side_effect = APIError({"message": "unreachable"})
        client = SupabaseClient(url="https://project.supabase.co", key="anon")

        assert await client.health_check() is False
