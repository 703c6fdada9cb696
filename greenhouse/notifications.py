"""
Notification emails

Renders schedule-run and threshold-alert emails and delivers them through
the Resend HTTP API. Ingestion hands threshold alerts to dispatch_many as a
background task, so delivery problems are logged there and never reach the
device that sent the reading.
"""
from abc import ABC, abstractmethod
from html import escape
from string import Template
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx
import structlog

from .exceptions import NotificationError
from .metrics import track_notification
from .models import NotificationRequest, NotificationType, ThresholdDirection
from .utils import mask_email, truncate_string, utcnow

logger = structlog.get_logger(__name__)

BRAND = "GreenHouse Pro"

_EMAIL_LAYOUT = Template("""<!DOCTYPE html>
<html>
<head>
  <style>
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #0a0a0a; color: #fafafa; }
    .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
    .card { border-radius: 16px; padding: 32px; background: $card_background; border: 1px solid ${accent}33; }
    .header { text-align: center; margin-bottom: 24px; }
    .logo { font-size: 24px; font-weight: bold; color: #22c55e; }
    .alert-badge { display: inline-block; background: #ef4444; color: white; padding: 4px 12px; border-radius: 20px; font-size: 12px; font-weight: bold; }
    .title { font-size: 20px; margin: 16px 0 8px; }
    .info { background: #0a0a0a; border-radius: 12px; padding: 16px; margin: 16px 0; }
    .info-row { display: flex; justify-content: space-between; padding: 8px 0; border-bottom: 1px solid #333; }
    .info-row:last-child { border-bottom: none; }
    .label { color: #888; }
    .value { color: $accent; font-weight: 500; }
    .footer { text-align: center; margin-top: 24px; color: #666; font-size: 12px; }
  </style>
</head>
<body>
  <div class="container">
    <div class="card">
      <div class="header">
        <div class="logo">$brand</div>
        $badge
        <h1 class="title">$title</h1>
      </div>
      <p>Hello$greeting_name,</p>
      <p>$intro</p>
      <div class="info">
$rows
      </div>
      <p>$closing</p>
      <div class="footer">
        <p>$brand - Smart Greenhouse Management</p>
      </div>
    </div>
  </div>
</body>
</html>
""")

_INFO_ROW = Template("""        <div class="info-row">
          <span class="label">$label</span>
          <span class="value">$value</span>
        </div>""")


def _format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _info_rows(rows: Iterable[Tuple[str, Any]]) -> str:
    return "\n".join(
        _INFO_ROW.substitute(label=escape(label), value=escape(_format_value(value)))
        for label, value in rows
    )


def _render_schedule_run(request: NotificationRequest) -> Tuple[str, str]:
    data = request.data
    schedule_type = data.schedule_type or "schedule"
    subject = f'Schedule "{data.schedule_name}" has started'
    type_label = {
        "irrigation": "Irrigation",
        "lighting": "Lighting",
    }.get(schedule_type, schedule_type.title())

    html = _EMAIL_LAYOUT.substitute(
        brand=BRAND,
        card_background="linear-gradient(135deg, #1a2e1a 0%, #0d1f0d 100%)",
        accent="#22c55e",
        badge="",
        title="Schedule Started",
        greeting_name=f" {escape(request.user_name)}" if request.user_name else "",
        intro=f"Your scheduled {escape(schedule_type)} task has started running:",
        rows=_info_rows([
            ("Schedule", data.schedule_name),
            ("Zone", data.zone_name or "All Zones"),
            ("Type", type_label),
            ("Time", utcnow().strftime("%H:%M UTC")),
        ]),
        closing="Your greenhouse is being taken care of automatically!",
    )
    return subject, html


def _render_threshold_alert(request: NotificationRequest) -> Tuple[str, str]:
    data = request.data
    is_above = data.threshold_type == ThresholdDirection.MAX
    subject = f"Alert: {data.metric} {'exceeded' if is_above else 'below'} threshold"

    html = _EMAIL_LAYOUT.substitute(
        brand=BRAND,
        card_background="linear-gradient(135deg, #2e1a1a 0%, #1f0d0d 100%)",
        accent="#ef4444",
        badge='<span class="alert-badge">ALERT</span>',
        title=f"Sensor Threshold {'Exceeded' if is_above else 'Below Minimum'}",
        greeting_name=f" {escape(request.user_name)}" if request.user_name else "",
        intro=(
            "A sensor reading in your greenhouse has "
            f"{'exceeded the maximum' if is_above else 'dropped below the minimum'} threshold:"
        ),
        rows=_info_rows([
            ("Metric", data.metric),
            ("Current Value", data.current_value),
            ("Max Threshold" if is_above else "Min Threshold", data.threshold),
            ("Zone", data.zone_name or "Main Greenhouse"),
        ]),
        closing="Please check your greenhouse controls and adjust settings if necessary.",
    )
    return subject, html


def render_notification(request: NotificationRequest) -> Tuple[str, str]:
    """Subject and HTML body for a notification request"""
    if request.type == NotificationType.SCHEDULE_RUN:
        return _render_schedule_run(request)
    return _render_threshold_alert(request)


class Notifier(ABC):
    """Delivers notification requests"""

    @abstractmethod
    async def send(self, request: NotificationRequest) -> Dict[str, Any]:
        """Deliver one notification; raise NotificationError on failure"""

    async def dispatch_many(self, requests: Iterable[NotificationRequest]) -> int:
        """Deliver notifications one by one, logging failures; returns how many were sent"""
        sent = 0
        for request in requests:
            try:
                await self.send(request)
                sent += 1
            except NotificationError as e:
                logger.warning(
                    "notification_dispatch_failed",
                    type=request.type.value,
                    recipient=mask_email(request.user_email),
                    error=e.message
                )
        return sent

    async def close(self) -> None:
        """Release resources; no-op by default"""


class ResendNotifier(Notifier):
    """Notifier backed by the Resend transactional email API"""

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = "https://api.resend.com/emails",
        sender: str = f"{BRAND} <onboarding@resend.dev>",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.sender = sender
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Created on first send so an unused notifier holds no connection pool"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, request: NotificationRequest) -> Dict[str, Any]:
        notification_type = request.type.value

        if not self.configured:
            track_notification(notification_type, "failed")
            raise NotificationError("Email delivery is not configured (RESEND_API_KEY missing)")

        subject, html = render_notification(request)
        logger.info(
            "notification_sending",
            type=notification_type,
            recipient=mask_email(request.user_email)
        )

        try:
            response = await self.client.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": [request.user_email],
                    "subject": subject,
                    "html": html,
                }
            )
        except httpx.HTTPError as e:
            track_notification(notification_type, "failed")
            raise NotificationError(f"Email API request failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {"raw": truncate_string(response.text)}

        if response.status_code >= 400:
            track_notification(notification_type, "failed")
            message = body.get("message") if isinstance(body, dict) else None
            raise NotificationError(
                message or f"Email API returned HTTP {response.status_code}",
                status_code=response.status_code
            )

        track_notification(notification_type, "sent")
        logger.info(
            "notification_sent",
            type=notification_type,
            recipient=mask_email(request.user_email),
            email_id=body.get("id") if isinstance(body, dict) else None
        )
        return body if isinstance(body, dict) else {"response": body}

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
