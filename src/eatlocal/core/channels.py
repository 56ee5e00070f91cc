"""Per-channel notification dispatchers.

Dispatchers never raise for provider trouble: every outcome comes back as a
:class:`DispatchResult`, with failure reasons prefixed by a
:class:`~eatlocal.types.DispatchErrorCode`.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError

from eatlocal.core.config import Settings
from eatlocal.db.crud.notifications import create_notification
from eatlocal.db.session import SessionFactory
from eatlocal.types import Channel, DispatchErrorCode

logger = logging.getLogger(__name__)

# Characters in the GSM 03.38 basic set and its extension table; anything
# else forces UCS-2 encoding.
_GSM7_BASIC = set(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÑÜ§¿abcdefghijklmnopqrstuvwxyzäöñüà"
)
_GSM7_EXTENDED = set("^{}\\[~]|€\f")


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one delivery attempt."""

    success: bool
    external_id: str | None = None
    error: str | None = None

    @classmethod
    def failure(cls, code: DispatchErrorCode, reason: str) -> DispatchResult:
        return cls(success=False, error=code.describe(reason))


class Dispatcher(Protocol):
    channel: Channel
    # Applied to template values before substitution, or None.
    encode: Callable[[str], str] | None

    async def dispatch(
        self,
        destination: str,
        subject: str | None,
        body: str,
        *,
        data: dict | None = None,
    ) -> DispatchResult: ...


def sms_segments(body: str) -> int:
    """Number of SMS segments *body* will be billed as."""
    if all(ch in _GSM7_BASIC or ch in _GSM7_EXTENDED for ch in body):
        # Extension characters take two septets.
        length = sum(2 if ch in _GSM7_EXTENDED else 1 for ch in body)
        single, multi = 160, 153
    else:
        length = len(body)
        single, multi = 70, 67
    if length <= single:
        return 1
    return -(-length // multi)


def _accepted_id(response: httpx.Response, field: str) -> str | None:
    """Read the provider's message id from a 2xx body, if it has one."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get(field):
        return str(payload[field])
    return None


def _provider_error(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if message:
            return f"HTTP {response.status_code}: {message}"
    return f"HTTP {response.status_code}: {response.text[:200]}"


# ---------------------------------------------------------------------------
# Email (Resend)
# ---------------------------------------------------------------------------


class EmailDispatcher:
    """Send HTML email through the Resend API."""

    channel = Channel.EMAIL
    encode = staticmethod(html.escape)

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None,
        from_email: str,
        api_url: str = "https://api.resend.com",
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._from_email = from_email
        self._api_url = api_url.rstrip("/")

    async def dispatch(
        self,
        destination: str,
        subject: str | None,
        body: str,
        *,
        data: dict | None = None,
    ) -> DispatchResult:
        if not self._api_key:
            return DispatchResult.failure(
                DispatchErrorCode.PROVIDER_UNAVAILABLE, "RESEND_API_KEY not configured"
            )
        try:
            response = await self._client.post(
                f"{self._api_url}/emails",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "from": self._from_email,
                    "to": [destination],
                    "subject": subject or "Notification",
                    "html": body,
                },
            )
        except httpx.HTTPError as exc:
            return DispatchResult.failure(
                DispatchErrorCode.PROVIDER_UNAVAILABLE, f"{type(exc).__name__}: {exc}"
            )

        if not response.is_success:
            return DispatchResult.failure(
                DispatchErrorCode.PROVIDER_REJECTED, _provider_error(response)
            )
        message_id = _accepted_id(response, "id")
        logger.info("Email accepted by Resend for %s (id=%s)", destination, message_id)
        return DispatchResult(success=True, external_id=message_id)


# ---------------------------------------------------------------------------
# SMS (Twilio)
# ---------------------------------------------------------------------------


class SmsDispatcher:
    """Send plain-text SMS through the Twilio Messages API."""

    channel = Channel.SMS
    encode = None

    def __init__(
        self,
        client: httpx.AsyncClient,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        api_url: str = "https://api.twilio.com",
    ) -> None:
        self._client = client
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._api_url = api_url.rstrip("/")

    async def dispatch(
        self,
        destination: str,
        subject: str | None,
        body: str,
        *,
        data: dict | None = None,
    ) -> DispatchResult:
        if not (self._account_sid and self._auth_token and self._from_number):
            return DispatchResult.failure(
                DispatchErrorCode.PROVIDER_UNAVAILABLE, "Twilio credentials not configured"
            )
        logger.debug("SMS to %s is %d segment(s)", destination, sms_segments(body))
        url = f"{self._api_url}/2010-04-01/Accounts/{self._account_sid}/Messages.json"
        try:
            response = await self._client.post(
                url,
                auth=(self._account_sid, self._auth_token),
                data={"To": destination, "From": self._from_number, "Body": body},
            )
        except httpx.HTTPError as exc:
            return DispatchResult.failure(
                DispatchErrorCode.PROVIDER_UNAVAILABLE, f"{type(exc).__name__}: {exc}"
            )

        if not response.is_success:
            return DispatchResult.failure(
                DispatchErrorCode.PROVIDER_REJECTED, _provider_error(response)
            )
        sid = _accepted_id(response, "sid")
        logger.info("SMS accepted by Twilio for %s (sid=%s)", destination, sid)
        return DispatchResult(success=True, external_id=sid)


# ---------------------------------------------------------------------------
# In-app inbox
# ---------------------------------------------------------------------------


class InAppDispatcher:
    """Write the notification into the recipient's in-app inbox."""

    channel = Channel.IN_APP
    encode = None

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def dispatch(
        self,
        destination: str,
        subject: str | None,
        body: str,
        *,
        data: dict | None = None,
    ) -> DispatchResult:
        data = data or {}
        try:
            async with self._session_factory() as session:
                notification = await create_notification(
                    session,
                    destination,
                    subject or "Notification",
                    body,
                    type=str(data.get("type") or "general"),
                    action_url=data.get("link"),
                    payload=data or None,
                )
        except SQLAlchemyError as exc:
            return DispatchResult.failure(
                DispatchErrorCode.PROVIDER_UNAVAILABLE, f"{type(exc).__name__}: {exc}"
            )
        return DispatchResult(success=True, external_id=notification.id)


class UnimplementedDispatcher:
    """Placeholder for channels with no provider integration yet."""

    encode = None

    def __init__(self, channel: Channel) -> None:
        self.channel = channel

    async def dispatch(
        self,
        destination: str,
        subject: str | None,
        body: str,
        *,
        data: dict | None = None,
    ) -> DispatchResult:
        return DispatchResult.failure(
            DispatchErrorCode.CHANNEL_NOT_IMPLEMENTED,
            f"{self.channel.value} delivery is not available",
        )


def build_dispatchers(
    settings: Settings,
    session_factory: SessionFactory,
    client: httpx.AsyncClient,
) -> dict[Channel, Dispatcher]:
    """Wire up one dispatcher per channel from *settings*."""
    return {
        Channel.EMAIL: EmailDispatcher(
            client, settings.resend_api_key, settings.from_email, settings.resend_api_url
        ),
        Channel.SMS: SmsDispatcher(
            client,
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_from_number,
            settings.twilio_api_url,
        ),
        Channel.IN_APP: InAppDispatcher(session_factory),
        Channel.PUSH: UnimplementedDispatcher(Channel.PUSH),
        Channel.WHATSAPP: UnimplementedDispatcher(Channel.WHATSAPP),
    }


def make_http_client(settings: Settings) -> httpx.AsyncClient:
    """HTTP client shared by the provider dispatchers."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.dispatch_timeout, connect=10.0),
        follow_redirects=False,
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
    )
