"""Customer testimonials: public submission and admin moderation."""
import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError as SchemaError

from database import DocumentStore
from errors import NotFoundError, ValidationError
from schemas import Testimonial

logger = logging.getLogger(__name__)

COLLECTION = "testimonial"

# action -> (field, value); approval and featuring are independent
TOGGLES = {
    "approve": ("approved", True),
    "unapprove": ("approved", False),
    "feature": ("featured", True),
    "unfeature": ("featured", False),
}


class TestimonialBoard:
    def __init__(self, store: DocumentStore):
        self.store = store

    def submit(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        fields = {k: v for k, v in data.items() if k not in ("approved", "featured", "id")}
        if isinstance(fields.get("email"), str):
            fields["email"] = fields["email"].strip().lower()
        try:
            record = Testimonial(**fields, approved=False, featured=False)
        except SchemaError as exc:
            error = exc.errors()[0]
            field = ".".join(str(p) for p in error.get("loc", ())) or "testimonial"
            raise ValidationError(f"Invalid {field}: {error.get('msg')}")
        created = self.store.insert(COLLECTION, record.model_dump(mode="json"))
        logger.info("Testimonial %s submitted by %s, awaiting review", created["id"], record.email)
        return created

    def published(self, featured: Optional[bool] = None, limit: int = 0) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"approved": True}
        if featured is not None:
            query["featured"] = featured
        return self.store.find(COLLECTION, query, sort=[("created_at", -1)], limit=limit)

    def all(self, approved: Optional[bool] = None) -> List[Dict[str, Any]]:
        query = {} if approved is None else {"approved": approved}
        return self.store.find(COLLECTION, query, sort=[("created_at", -1)])

    def set_flag(self, testimonial_id: str, action: str) -> Dict[str, Any]:
        if action not in TOGGLES:
            raise ValidationError(f"Unknown action: {action}")
        field, value = TOGGLES[action]
        updated = self.store.update(COLLECTION, testimonial_id, {field: value})
        if updated is None:
            raise NotFoundError("Testimonial not found")
        return updated

    def approve(self, testimonial_id: str) -> Dict[str, Any]:
        return self.set_flag(testimonial_id, "approve")

    def unapprove(self, testimonial_id: str) -> Dict[str, Any]:
        return self.set_flag(testimonial_id, "unapprove")

    def feature(self, testimonial_id: str) -> Dict[str, Any]:
        return self.set_flag(testimonial_id, "feature")

    def unfeature(self, testimonial_id: str) -> Dict[str, Any]:
        return self.set_flag(testimonial_id, "unfeature")

    def delete(self, testimonial_id: str) -> None:
        if not self.store.delete(COLLECTION, testimonial_id):
            raise NotFoundError("Testimonial not found")
        logger.info("Testimonial %s deleted", testimonial_id)
