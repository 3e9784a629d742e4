"""
Twilio REST client for outbound recorded calls and confirmation texts.

Talks to the Programmable Voice and Messaging REST endpoints directly over
``httpx`` with HTTP basic auth (account SID / auth token).
"""

import logging
from typing import Dict, Optional, Tuple

import httpx

from voicegate.clients.base import CallProvider, NotificationChannel, ProviderUnavailable
from voicegate.config import settings
from voicegate.utils.privacy import mask_phone

logger = logging.getLogger(__name__)


class TwilioClient(CallProvider, NotificationChannel):
    """
    Call provider and notification channel backed by Twilio.

    Args:
        account_sid: Twilio account SID
        auth_token: Twilio auth token
        from_number: Default originating number for texts
        api_base: REST API base URL
        timeout: Request timeout in seconds
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_phone_number
        self.api_base = (api_base or settings.twilio_api_base).rstrip('/')
        self.timeout = timeout
        self._transport = transport

    @property
    def auth(self) -> Tuple[str, str]:
        """Basic auth credentials, also required to download recordings."""
        return self.account_sid, self.auth_token

    def _url(self, resource: str) -> str:
        return f"{self.api_base}/2010-04-01/Accounts/{self.account_sid}/{resource}.json"

    async def _post(self, resource: str, data: Dict[str, str]) -> Dict:
        if not self.account_sid or not self.auth_token:
            raise ProviderUnavailable("Twilio credentials are not configured")

        try:
            async with httpx.AsyncClient(
                auth=self.auth,
                timeout=self.timeout,
                transport=self._transport
            ) as client:
                response = await client.post(self._url(resource), data=data)
                response.raise_for_status()
                return response.json()

        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling Twilio {resource}: {e}")
            raise ProviderUnavailable(f"Timeout calling Twilio {resource}: {e}")
        except httpx.HTTPStatusError as e:
            logger.error(f"Twilio {resource} returned {e.response.status_code}: {e.response.text}")
            raise ProviderUnavailable(f"Twilio {resource} failed with status {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error calling Twilio {resource}: {e}")
            raise ProviderUnavailable(f"Twilio {resource} failed: {e}")

    async def place_call(
        self,
        destination: str,
        origin_number: str,
        script_url: str,
        record: bool = True,
        status_callback: Optional[str] = None
    ) -> str:
        data = {
            "To": destination,
            "From": origin_number or self.from_number,
            "Url": script_url,
            "Record": "true" if record else "false",
            "Timeout": "60",
        }
        if status_callback:
            data["StatusCallback"] = status_callback

        payload = await self._post("Calls", data)
        call_sid = payload.get("sid")
        if not call_sid:
            raise ProviderUnavailable("Twilio call response did not include a call SID")

        logger.info(f"Placed call {call_sid} to {mask_phone(destination)}")
        return call_sid

    async def send(self, phone_number: str, message: str) -> None:
        payload = await self._post("Messages", {
            "To": phone_number,
            "From": self.from_number,
            "Body": message,
        })
        logger.info(f"Sent text {payload.get('sid')} to {mask_phone(phone_number)}")
