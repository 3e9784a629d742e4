"""
Tests for the Twilio REST client.
"""

from urllib.parse import parse_qs

import httpx
import pytest

from voicegate.clients.base import ProviderUnavailable
from voicegate.clients.twilio_client import TwilioClient


def make_client(handler, **kwargs):
    return TwilioClient(
        account_sid=kwargs.get("account_sid", "AC123"),
        auth_token=kwargs.get("auth_token", "secret"),
        from_number="+15005550006",
        api_base="https://api.twilio.test",
        transport=httpx.MockTransport(handler)
    )


class TestTwilioClient:

    @pytest.mark.asyncio
    async def test_place_call(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"sid": "CA42", "status": "queued"})

        client = make_client(handler)

        call_sid = await client.place_call(
            destination="+51999888777",
            origin_number="+15005550006",
            script_url="https://voice.example.com/biometric/verify/abc",
            status_callback="https://voice.example.com/biometric/call-status"
        )

        assert call_sid == "CA42"
        request = requests[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Calls.json"
        assert request.headers["Authorization"].startswith("Basic ")

        form = parse_qs(request.content.decode())
        assert form["To"] == ["+51999888777"]
        assert form["Url"] == ["https://voice.example.com/biometric/verify/abc"]
        assert form["Record"] == ["true"]
        assert form["StatusCallback"] == ["https://voice.example.com/biometric/call-status"]

    @pytest.mark.asyncio
    async def test_send_text(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"sid": "SM42"})

        client = make_client(handler)

        await client.send("+51999888777", "Transacción autorizada")

        assert requests[0].url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        form = parse_qs(requests[0].content.decode())
        assert form["From"] == ["+15005550006"]
        assert form["Body"] == ["Transacción autorizada"]

    @pytest.mark.asyncio
    async def test_error_status_raises_provider_unavailable(self):
        def handler(request):
            return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})

        client = make_client(handler)

        with pytest.raises(ProviderUnavailable, match="status 400"):
            await client.place_call("+51999888777", "+15005550006", "https://voice.example.com/x")

    @pytest.mark.asyncio
    async def test_transport_error_raises_provider_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(ProviderUnavailable):
            await client.send("+51999888777", "hola")

    @pytest.mark.asyncio
    async def test_missing_call_sid(self):
        def handler(request):
            return httpx.Response(201, json={"status": "queued"})

        client = make_client(handler)

        with pytest.raises(ProviderUnavailable, match="call SID"):
            await client.place_call("+51999888777", "+15005550006", "https://voice.example.com/x")

    @pytest.mark.asyncio
    async def test_missing_credentials(self, monkeypatch):
        monkeypatch.setattr("voicegate.clients.twilio_client.settings.twilio_auth_token", "")

        def handler(request):
            raise AssertionError("no request expected")

        client = make_client(handler, auth_token="")

        with pytest.raises(ProviderUnavailable, match="credentials"):
            await client.send("+51999888777", "hola")
