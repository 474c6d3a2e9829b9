"""Email alerts for newly opened positions.

Messages go out through the Resend HTTP API. Without an API key the
transport only logs what it would have sent. Transport failures are retried
under a bounded exponential backoff and every alert, delivered or not, is
written to the notification audit log.
"""

import asyncio
import html
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from tracker.config import settings
from tracker.errors import NotificationError
from tracker.utils.constants import SIDE_LONG

logger = logging.getLogger(__name__)

LONG_COLOR = "#22c55e"
SHORT_COLOR = "#ef4444"


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@dataclass
class RetryOutcome:
    ok: bool
    attempts: int
    error: str | None = None
    result: Any = None


@dataclass
class RetryPolicy:
    """Bounded retry with exponential backoff.

    ``max_attempts`` counts the first call, so 3 means one call plus at most
    two retries. The delay starts at ``base_delay`` and is multiplied by
    ``backoff_factor`` after every failure, capped at ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    backoff_factor: float = 2.0
    exceptions: tuple[type[BaseException], ...] = (NotificationError,)
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.email_max_attempts,
            base_delay=settings.email_base_delay_seconds,
            max_delay=settings.email_max_delay_seconds,
        )

    async def run(self, operation: Callable[[], Awaitable[Any]], label: str = "operation") -> RetryOutcome:
        delay = self.base_delay
        attempts = max(self.max_attempts, 1)
        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            try:
                result = await operation()
                return RetryOutcome(ok=True, attempts=attempt, result=result)
            except self.exceptions as e:
                last_error = e
                if attempt >= attempts:
                    break
                logger.warning(f"{label} attempt {attempt}/{attempts} failed: {e}, retrying in {delay:.1f}s")
                await self.sleep(delay)
                delay = min(delay * self.backoff_factor, self.max_delay)

        logger.error(f"{label} failed after {attempts} attempts: {last_error}")
        return RetryOutcome(ok=False, attempts=attempts, error=str(last_error))


# ---------------------------------------------------------------------------
# Message building
# ---------------------------------------------------------------------------

@dataclass
class EmailMessage:
    to: list[str]
    subject: str
    html: str
    text: str


def display_address(address: str, alias: str | None = None) -> str:
    return alias or f"{address[:6]}...{address[-4:]}"


def format_size(size: float) -> str:
    return f"+{size:g}" if size > 0 else f"{size:g}"


def build_position_email(
    recipients: list[str],
    address: str,
    asset: str,
    side: str,
    size: float,
    entry_price: float,
    alias: str | None = None,
    detected_at: datetime | None = None,
) -> EmailMessage:
    who = display_address(address, alias)
    color = LONG_COLOR if side == SIDE_LONG else SHORT_COLOR
    size_text = format_size(size)
    price_text = f"{entry_price:,}"
    when = (detected_at or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S UTC")

    rows = [
        ("Address", html.escape(who), ""),
        ("Asset", html.escape(asset), ""),
        ("Side", f"<strong>{side}</strong>", f" color: {color};"),
        ("Size", size_text, ""),
        ("Entry Price", price_text, ""),
    ]
    table = "\n".join(
        f'<tr><td style="padding: 8px;"><strong>{label}:</strong></td>'
        f'<td style="padding: 8px;{style}">{value}</td></tr>'
        for label, value, style in rows
    )
    body_html = (
        f'<h2 style="color: {color};">New {side} Position Detected</h2>\n'
        f'<div style="background: #f8f9fa; padding: 20px; border-radius: 8px;">\n'
        f"<h3>Position Details:</h3>\n"
        f'<table style="width: 100%; border-collapse: collapse;">\n{table}\n</table>\n'
        f"</div>\n"
        f'<p style="color: #6c757d; font-size: 14px;"><em>Detected at: {when}</em></p>\n'
        f'<p style="font-size: 12px; color: #6c757d;">'
        f"This notification was sent by your Hyperliquid Position Tracker.</p>"
    )
    body_text = (
        f"New {side} Position Detected\n\n"
        f"Position Details:\n"
        f"- Address: {who}\n"
        f"- Asset: {asset}\n"
        f"- Side: {side}\n"
        f"- Size: {size_text}\n"
        f"- Entry Price: {price_text}\n\n"
        f"Detected at: {when}\n\n"
        f"This notification was sent by your Hyperliquid Position Tracker."
    )
    return EmailMessage(
        to=list(recipients),
        subject=f"New {side} Position: {asset} - {who}",
        html=body_html,
        text=body_text,
    )


def build_test_email(recipients: list[str]) -> EmailMessage:
    sent_at = datetime.now(timezone.utc).isoformat()
    sample = "- Address: 0x1234...5678\n- Asset: ETH\n- Side: LONG\n- Size: 1.5\n- Entry Price: 2,500.0"
    return EmailMessage(
        to=list(recipients),
        subject="Test Notification - Hyperliquid Position Tracker",
        html=(
            "<h2>Test Notification</h2>\n"
            "<p>This is a test notification from your Hyperliquid Position Tracker.</p>\n"
            "<ul><li><strong>Address:</strong> 0x1234...5678</li>"
            "<li><strong>Asset:</strong> ETH</li>"
            "<li><strong>Side:</strong> LONG</li>"
            "<li><strong>Size:</strong> 1.5</li>"
            "<li><strong>Entry Price:</strong> 2,500.0</li></ul>\n"
            f"<p><em>Sent at: {sent_at}</em></p>"
        ),
        text=(
            "Test Notification - Hyperliquid Position Tracker\n\n"
            "This is a test notification from your Hyperliquid Position Tracker.\n\n"
            f"Sample Position Data:\n{sample}\n\nSent at: {sent_at}"
        ),
    )


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class ResendTransport:
    """POSTs messages to the Resend emails endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        sender: str | None = None,
        timeout: float = 10.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = settings.resend_api_key if api_key is None else api_key
        self.api_url = api_url or settings.resend_api_url
        self.sender = sender or settings.email_from
        self.timeout = timeout
        self._http_transport = http_transport

    @property
    def log_only(self) -> bool:
        return not self.api_key

    async def send(self, message: EmailMessage) -> str | None:
        """Send one message. Returns the provider's message id, None in log-only mode."""
        if self.log_only:
            logger.info(f"Email not sent (no API key configured) to={message.to} subject={message.subject!r}")
            return None

        payload = {
            "from": self.sender,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._http_transport) as client:
                resp = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NotificationError(f"Email provider unreachable: {e}") from e

        if resp.status_code >= 400:
            raise NotificationError(f"Email provider rejected message ({resp.status_code}): {resp.text[:200]}")
        try:
            return resp.json().get("id")
        except ValueError:
            return None


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class NotificationDispatcher:
    def __init__(self, store, transport: ResendTransport | None = None, retry: RetryPolicy | None = None):
        self.store = store
        self.transport = transport or ResendTransport()
        self.retry = retry or RetryPolicy.from_settings()

    def _recipients(self) -> list[str]:
        return [row.email for row in self.store.list_emails(active_only=True)]

    async def notify_new_position(
        self,
        address: str,
        asset: str,
        side: str,
        size: float,
        entry_price: float,
        alias: str | None = None,
    ) -> bool:
        """Email every active recipient about a new position.

        Returns True when the transport accepted the message. With no
        recipients nothing is sent and nothing is audited.
        """
        recipients = self._recipients()
        if not recipients:
            logger.warning(f"No notification emails configured, skipping alert for {asset} {side}")
            return False

        message = build_position_email(recipients, address, asset, side, size, entry_price, alias)
        outcome = await self.retry.run(
            lambda: self.transport.send(message),
            label=f"Alert {address}-{asset}",
        )
        self.store.log_notification(
            address=address,
            asset=asset,
            side=side,
            size=size,
            entry_price=entry_price,
            sent=outcome.ok,
            attempts=outcome.attempts,
            error=outcome.error,
        )
        if outcome.ok:
            logger.info(f"Alert sent to {len(recipients)} recipients: {message.subject}")
        return outcome.ok

    async def send_test_notification(self) -> bool:
        """Send a sample alert to the active recipients. Not audited."""
        recipients = self._recipients()
        if not recipients:
            logger.warning("No notification emails configured for test")
            return False
        outcome = await self.retry.run(
            lambda: self.transport.send(build_test_email(recipients)),
            label="Test notification",
        )
        return outcome.ok
