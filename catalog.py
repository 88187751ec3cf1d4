"""Service catalog managed from the admin area and listed on the services page."""
import logging
import re
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError as SchemaError

from database import DocumentStore
from errors import NotFoundError, ValidationError
from schemas import Service

logger = logging.getLogger(__name__)

COLLECTION = "service"


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return slug.strip("-")


def _service(data: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        return Service(**data).model_dump()
    except SchemaError as exc:
        error = exc.errors()[0]
        field = ".".join(str(p) for p in error.get("loc", ())) or "service"
        raise ValidationError(f"Invalid {field}: {error.get('msg')}")


class ServiceCatalog:
    def __init__(self, store: DocumentStore):
        self.store = store

    def active(self) -> List[Dict[str, Any]]:
        return self.store.find(COLLECTION, {"active": True}, sort=[("order", 1), ("name", 1)])

    def all(self) -> List[Dict[str, Any]]:
        return self.store.find(COLLECTION, {}, sort=[("order", 1), ("name", 1)])

    def by_slug(self, slug: str) -> Dict[str, Any]:
        doc = self.store.find_one(COLLECTION, {"slug": slug, "active": True})
        if doc is None:
            raise NotFoundError("Service not found")
        return doc

    def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        doc = _service(data)
        doc["slug"] = slugify(doc.get("slug") or doc["name"])
        if self.store.find_one(COLLECTION, {"slug": doc["slug"]}):
            raise ValidationError(f"A service with slug '{doc['slug']}' already exists")
        created = self.store.insert(COLLECTION, doc)
        logger.info("Added service %s", doc["slug"])
        return created

    def update(self, service_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        current = self.store.get(COLLECTION, service_id)
        if current is None:
            raise NotFoundError("Service not found")
        merged = {**current, **{k: v for k, v in data.items() if k not in ("id", "created_at", "updated_at")}}
        doc = _service(merged)
        doc["slug"] = slugify(doc.get("slug") or doc["name"])
        clash = self.store.find_one(COLLECTION, {"slug": doc["slug"]})
        if clash and clash["id"] != service_id:
            raise ValidationError(f"A service with slug '{doc['slug']}' already exists")
        return self.store.update(COLLECTION, service_id, doc)

    def delete(self, service_id: str) -> None:
        if not self.store.delete(COLLECTION, service_id):
            raise NotFoundError("Service not found")
