"""
Appointment booking and the admin side of the appointment book.

``book`` validates the public form, normalizes it and persists a pending
appointment. Notification emails are sent afterwards by
``send_booking_notifications``, which is scheduled as a background task and
cannot affect the booking response.
"""
import logging
import re
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError as SchemaError

import notifications
from config import Settings
from database import DocumentStore
from errors import NotFoundError, StoreError, TransitionError, ValidationError
from formatters import digits_only
from schemas import APPOINTMENT_STATUSES, Appointment, AppointmentNote, AppointmentUpdate

logger = logging.getLogger(__name__)

COLLECTION = "appointment"

REQUIRED_FIELDS = ("name", "email", "phone", "service", "date", "time")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PHONE_DIGITS = 10

ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "cancelled", "no-show"},
    "confirmed": {"pending", "in-progress", "cancelled", "no-show"},
    "in-progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
    "no-show": set(),
}


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return str(value).strip() if value is not None else ""


def validate_booking(payload: Mapping[str, Any]) -> None:
    for field in REQUIRED_FIELDS:
        if not _text(payload, field):
            raise ValidationError(f"{field.capitalize()} is required")
    if not EMAIL_RE.match(_text(payload, "email")):
        raise ValidationError("Please enter a valid email address")
    if len(digits_only(_text(payload, "phone"))) < MIN_PHONE_DIGITS:
        raise ValidationError("Please enter a valid phone number")


def _optional(payload: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = _text(payload, key)
        if value:
            return value
    return None


def build_record(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Normalized appointment document for a validated booking payload."""
    vehicle = payload.get("vehicle_info") if isinstance(payload.get("vehicle_info"), dict) else {}
    record = Appointment(
        name=_text(payload, "name"),
        email=_text(payload, "email").lower(),
        phone=_text(payload, "phone"),
        service=_text(payload, "service"),
        date=_text(payload, "date"),
        time=_text(payload, "time"),
        message=_text(payload, "message"),
        vehicle_info={
            "year": _optional(payload, "vehicleYear", "vehicle_year") or _optional(vehicle, "year"),
            "make": _optional(payload, "vehicleMake", "vehicle_make") or _optional(vehicle, "make"),
            "model": _optional(payload, "vehicleModel", "vehicle_model") or _optional(vehicle, "model"),
        },
        status="pending",
        urgency="medium",
        confirmation_sent=False,
        reminder_sent=False,
    )
    return record.model_dump()


def resolve_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    if value.strip().lower() == "today":
        return date.today().isoformat()
    return value.strip()


def check_transition(current: str, new: str) -> None:
    if current == new:
        return
    if new not in APPOINTMENT_STATUSES:
        raise ValidationError(f"Invalid status: {new}")
    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise TransitionError(f"Cannot change appointment from {current} to {new}")


class AppointmentBook:
    def __init__(self, store: DocumentStore, settings: Settings):
        self.store = store
        self.settings = settings

    def book(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        validate_booking(payload)
        try:
            record = build_record(payload)
        except SchemaError as exc:
            raise ValidationError(exc.errors()[0].get("msg", "Invalid appointment"))
        try:
            created = self.store.insert(COLLECTION, record)
        except StoreError:
            logger.exception("Could not save appointment for %s", record["email"])
            raise StoreError(
                "Sorry, there was a problem submitting your appointment. "
                f"Please try again or call us directly at {self.settings.shop_phone}.",
                public=True,
            )
        logger.info("Booked appointment %s for %s on %s %s", created["id"], record["email"], record["date"], record["time"])
        return created

    def list(self, status: Optional[str] = None, on_date: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        day = resolve_date(on_date)
        if day:
            query["date"] = day
        return self.store.find(COLLECTION, query, sort=[("date", 1), ("time", 1)])

    def get(self, appointment_id: str) -> Dict[str, Any]:
        doc = self.store.get(COLLECTION, appointment_id)
        if doc is None:
            raise NotFoundError("Appointment not found")
        return doc

    def update(self, appointment_id: str, changes: AppointmentUpdate) -> Dict[str, Any]:
        current = self.get(appointment_id)
        fields = changes.model_dump(exclude_unset=True)
        if "status" in fields:
            check_transition(current.get("status") or "pending", fields["status"])
        if not fields:
            return current
        updated = self.store.update(COLLECTION, appointment_id, fields)
        if updated is None:
            raise NotFoundError("Appointment not found")
        if "status" in fields and fields["status"] != current.get("status"):
            logger.info("Appointment %s: %s -> %s", appointment_id, current.get("status"), fields["status"])
        return updated

    def add_note(self, appointment_id: str, note: AppointmentNote) -> Dict[str, Any]:
        current = self.get(appointment_id)
        notes = list(current.get("notes") or [])
        notes.append(note.model_dump())
        updated = self.store.update(COLLECTION, appointment_id, {"notes": notes})
        if updated is None:
            raise NotFoundError("Appointment not found")
        return updated

    def mark_confirmation_sent(self, appointment_id: str) -> None:
        self.store.update(COLLECTION, appointment_id, {"confirmation_sent": True})


def send_booking_notifications(
    appointment: Dict[str, Any],
    notifier: notifications.Notifier,
    book: AppointmentBook,
) -> List[notifications.NotificationResult]:
    """Shop notice and customer confirmation, each attempted independently."""
    results = []
    for send in (notifications.notify_shop, notifications.notify_customer):
        try:
            results.append(send(notifier, appointment, book.settings))
        except Exception as exc:
            results.append(notifications.NotificationResult(send.__name__, False, str(exc)))

    confirmation = results[1]
    if confirmation.ok:
        try:
            book.mark_confirmation_sent(appointment["id"])
        except StoreError as exc:
            logger.warning("Could not flag confirmation for %s: %s", appointment["id"], exc)
    notifications.log_results(results, f"appointment {appointment['id']}")
    return results
