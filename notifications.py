"""
Transactional email through the shop's HTTPS email functions.

Each send returns a ``NotificationResult``; callers log it and move on. A
failed email never changes the outcome of the request that triggered it.
"""
import logging
from dataclasses import dataclass
from html import escape
from typing import Any, Dict, List, Optional

import requests

from config import Settings
from formatters import format_phone_number, vehicle_title

logger = logging.getLogger(__name__)

SHOP_NOTIFICATION = "send-appointment-email"
CUSTOMER_CONFIRMATION = "send-confirmation-email"
GENERIC_EMAIL = "send-email"


@dataclass
class NotificationResult:
    channel: str
    ok: bool
    error: Optional[str] = None


class Notifier:
    """Posts JSON payloads to ``{functions_url}/{function}`` with a bearer token."""

    def __init__(self, functions_url: str, token: str, timeout: float = 10):
        self.functions_url = functions_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.functions_url and self.token)

    def send(self, function: str, payload: Dict[str, Any]) -> NotificationResult:
        if not self.configured:
            return NotificationResult(function, False, "email functions not configured")
        try:
            response = requests.post(
                f"{self.functions_url}/{function}",
                json=payload,
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            return NotificationResult(function, False, str(exc))
        if not response.ok:
            return NotificationResult(function, False, f"HTTP {response.status_code}: {response.text[:200]}")
        return NotificationResult(function, True)


def from_settings(settings: Settings) -> Notifier:
    return Notifier(settings.functions_url, settings.supabase_key)


def _email_view(appointment: Dict[str, Any]) -> Dict[str, Any]:
    keys = ("id", "name", "email", "phone", "service", "date", "time", "message", "vehicle_info")
    view = {k: appointment.get(k) for k in keys}
    view["id"] = str(view["id"]) if view["id"] is not None else None
    view["phone"] = format_phone_number(appointment.get("phone"))
    return view


def shop_html(appointment: Dict[str, Any], settings: Settings) -> str:
    vehicle = vehicle_title(appointment.get("vehicle_info"))
    rows = [
        ("Customer", appointment.get("name")),
        ("Email", appointment.get("email")),
        ("Phone", format_phone_number(appointment.get("phone"))),
        ("Service", appointment.get("service")),
        ("Date", appointment.get("date")),
        ("Time", appointment.get("time")),
    ]
    if vehicle:
        rows.append(("Vehicle", vehicle))
    if appointment.get("message"):
        rows.append(("Message", appointment.get("message")))
    body = "".join(f"<p><strong>{label}:</strong> {escape(str(value))}</p>" for label, value in rows)
    return f"<h2>New Appointment Request</h2>{body}<p>{escape(settings.shop_name)}</p>"


def customer_html(appointment: Dict[str, Any], settings: Settings) -> str:
    return (
        "<h2>Thank You for Your Appointment Request</h2>"
        f"<p>Dear {escape(appointment.get('name') or '')},</p>"
        "<p>We have received your appointment request and will confirm it within 24 hours.</p>"
        "<ul>"
        f"<li><strong>Service:</strong> {escape(appointment.get('service') or '')}</li>"
        f"<li><strong>Requested Date:</strong> {escape(str(appointment.get('date') or ''))}</li>"
        f"<li><strong>Requested Time:</strong> {escape(str(appointment.get('time') or ''))}</li>"
        "</ul>"
        f"<p>Questions or changes? Call us at <strong>{escape(settings.shop_phone)}</strong>.</p>"
        f"<hr><p>{escape(settings.shop_name)}<br>{escape(settings.shop_address)}<br>{escape(settings.shop_phone)}</p>"
    )


def notify_shop(notifier: Notifier, appointment: Dict[str, Any], settings: Settings) -> NotificationResult:
    return notifier.send(SHOP_NOTIFICATION, {
        "appointment": _email_view(appointment),
        "to": settings.shop_email,
        "subject": f"New Appointment Request - {appointment.get('name')}",
        "html": shop_html(appointment, settings),
    })


def notify_customer(notifier: Notifier, appointment: Dict[str, Any], settings: Settings) -> NotificationResult:
    return notifier.send(CUSTOMER_CONFIRMATION, {
        "appointment": _email_view(appointment),
        "to": appointment.get("email"),
        "subject": f"Appointment Request Received - {settings.shop_name}",
        "html": customer_html(appointment, settings),
    })


def notify_contact(notifier: Notifier, message: Dict[str, Any], settings: Settings) -> NotificationResult:
    rows = [(k.capitalize(), message.get(k)) for k in ("name", "email", "phone", "subject", "message", "vehicle") if message.get(k)]
    html = "<h2>New Contact Message</h2>" + "".join(
        f"<p><strong>{label}:</strong> {escape(str(value))}</p>" for label, value in rows
    )
    return notifier.send(GENERIC_EMAIL, {
        "to": settings.shop_email,
        "reply_to": message.get("email"),
        "subject": f"Website Contact: {message.get('subject')}",
        "html": html,
    })


def log_results(results: List[NotificationResult], context: str) -> None:
    for result in results:
        if result.ok:
            logger.info("%s: %s sent", context, result.channel)
        else:
            logger.warning("%s: %s failed (%s)", context, result.channel, result.error)
