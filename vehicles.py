"""
Vehicle catalog: inventory listing, detail reads, admin create/update/delete.

Images are always returned as a list of ``{url, alt, isPrimary}`` dicts no
matter how the record was written. Slugs are derived from year, make, model
and stock number and only change when one of those does.
"""
import json
import logging
import math
import re
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError as SchemaError

from database import DocumentStore
from errors import NotFoundError, ValidationError
from formatters import format_currency, format_mileage
from inventory import VehicleQuery
from schemas import VEHICLE_STATUSES, Vehicle
from storage import ImagePipeline, Upload

logger = logging.getLogger(__name__)

COLLECTION = "vehicle"

SLUG_FIELDS = ("year", "make", "model", "stock_number")
REQUIRED_FIELDS = ("year", "make", "model", "price", "stock_number")
INT_FIELDS = ("year", "mileage", "number_of_owners")
FLOAT_FIELDS = ("price", "sale_price", "monthly_payment")
BOOL_FIELDS = ("financing_available", "carfax_available", "accident_history", "featured")
# never writable through the admin forms
PROTECTED_FIELDS = ("id", "_id", "views", "inquiries", "created_at", "updated_at", "slug", "images")


def make_slug(year: Any, make: Any, model: Any, stock_number: Any) -> str:
    raw = f"{year}-{make}-{model}-{stock_number}".strip().lower()
    raw = re.sub(r"\s+", "-", raw)
    return re.sub(r"[^\w-]", "", raw)


def default_stock_number() -> str:
    return f"AP{str(int(time.time() * 1000))[-6:]}"


def normalize_images(value: Any, alt: str = "") -> List[Dict[str, Any]]:
    """Coerce any stored images value into a list of ``{url, alt, isPrimary}``.

    Bare strings become image records, a JSON-encoded list is decoded, a
    single dict is wrapped. Data that cannot be interpreted gives ``[]``.
    Already-normalized input comes back unchanged.
    """
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text[0] in "[{":
            try:
                value = json.loads(text)
            except ValueError:
                logger.warning("Discarding malformed images value %.60r", text)
                return []
        else:
            value = [text]
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        return []

    images = []
    for index, item in enumerate(value):
        if isinstance(item, str):
            url, item_alt, primary = item, alt, None
        elif isinstance(item, dict):
            url = item.get("url") or item.get("publicUrl")
            item_alt = item.get("alt", alt)
            primary = item.get("isPrimary", item.get("is_primary"))
        else:
            continue
        if not url or not isinstance(url, str):
            continue
        images.append({
            "url": url,
            "alt": item_alt if item_alt is not None else alt,
            "isPrimary": bool(primary) if primary is not None else index == 0,
        })
    return images


def display_name(doc: Mapping[str, Any]) -> str:
    return " ".join(str(doc[k]) for k in ("year", "make", "model") if doc.get(k))


def summary(doc: Mapping[str, Any]) -> str:
    """One-line description used in inquiry emails, e.g. ``2019 Toyota Camry - $15,900 - 45,000 miles``."""
    parts = [display_name(doc), format_currency(doc.get("sale_price") or doc.get("price"))]
    if doc.get("mileage") is not None:
        parts.append(format_mileage(doc.get("mileage")))
    if doc.get("stock_number"):
        parts.append(f"Stock #{doc['stock_number']}")
    return " - ".join(parts)


def present(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Shape a stored vehicle for API output."""
    if doc is None:
        return None
    doc["images"] = normalize_images(doc.get("images"), alt=display_name(doc))
    return doc


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    text = str(value or "").strip()
    if text.startswith("["):
        try:
            return [str(v).strip() for v in json.loads(text) if str(v).strip()]
        except ValueError:
            pass
    return [part.strip() for part in text.split(",") if part.strip()]


def clearable(key: str) -> bool:
    """True for optional fields that an update may blank out."""
    field = Vehicle.model_fields.get(key)
    return field is not None and not field.is_required() and field.default is None


def coerce_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn submitted form strings into typed values; blank strings become None."""
    data: Dict[str, Any] = {}
    for key, value in fields.items():
        if key in PROTECTED_FIELDS:
            continue
        if isinstance(value, str):
            value = value.strip()
            if value == "":
                value = None
        if value is None:
            data[key] = None
            continue
        try:
            if key in INT_FIELDS:
                value = int(float(value))
            elif key in FLOAT_FIELDS:
                value = float(value)
        except (TypeError, ValueError, OverflowError):
            raise ValidationError(f"{key.replace('_', ' ').capitalize()} must be a number")
        if key in BOOL_FIELDS:
            value = _parse_bool(value)
        elif key == "features":
            value = _parse_list(value)
        elif key == "vin":
            value = str(value).upper()
        data[key] = value
    return data


def _validated(data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return Vehicle(**data).to_doc()
    except SchemaError as exc:
        error = exc.errors()[0]
        where = ".".join(str(p) for p in error.get("loc", ()))
        raise ValidationError(f"Invalid {where}: {error.get('msg')}")


class VehicleCatalog:
    def __init__(self, store: DocumentStore, images: ImagePipeline):
        self.store = store
        self.images = images

    def list(self, query: VehicleQuery) -> Dict[str, Any]:
        store_query = query.to_store_query()
        total = self.store.count(COLLECTION, store_query)
        docs = self.store.find(
            COLLECTION,
            store_query,
            sort=query.sort_spec(),
            skip=query.skip,
            limit=query.limit,
        )
        return {
            "vehicles": [present(doc) for doc in docs],
            "total": total,
            "page": query.page,
            "pages": math.ceil(total / query.limit) if query.limit else 1,
            "limit": query.limit,
        }

    def get(self, vehicle_id: str) -> Dict[str, Any]:
        doc = self.store.get(COLLECTION, vehicle_id)
        if doc is None:
            raise NotFoundError("Vehicle not found")
        return doc

    def get_by_id(self, vehicle_id: str) -> Dict[str, Any]:
        """Fetch a vehicle for display and count the view."""
        doc = self.store.increment(COLLECTION, vehicle_id, "views")
        if doc is None:
            raise NotFoundError("Vehicle not found")
        return present(doc)

    def create(self, fields: Mapping[str, Any], uploads: List[Upload]) -> Dict[str, Any]:
        data = coerce_fields(fields)
        if not data.get("stock_number"):
            data["stock_number"] = default_stock_number()
        data["condition"] = data.get("condition") or "Good"
        data["status"] = data.get("status") or "available"
        data = {k: v for k, v in data.items() if v is not None}
        for required in REQUIRED_FIELDS[:4]:
            if data.get(required) in (None, ""):
                raise ValidationError(f"{required.capitalize()} is required")

        data["views"] = 0
        data["inquiries"] = 0
        data["slug"] = make_slug(*(data.get(k) for k in SLUG_FIELDS))
        doc = _validated(data)

        name = display_name(doc)
        stored = self.images.store(uploads, alt=name)
        doc["images"] = stored.images or [self.images.fallback_image(name)]
        try:
            created = self.store.insert(COLLECTION, doc)
        except Exception:
            for image in stored.images:
                self.images.remove_url(image["url"])
            raise
        logger.info("Created vehicle %s (%s) with %d images", created["id"], doc["slug"], len(stored.images))
        return present(created)

    def update(
        self,
        vehicle_id: str,
        fields: Mapping[str, Any],
        uploads: Optional[List[Upload]] = None,
        keep_images: Optional[Iterable[str]] = None,
    ) -> Dict[str, Any]:
        existing = self.get(vehicle_id)
        changes = {k: v for k, v in coerce_fields(fields).items() if v is not None or clearable(k)}
        merged = {k: v for k, v in {**existing, **changes}.items() if k not in ("id", "created_at", "updated_at")}
        merged["images"] = normalize_images(existing.get("images"), alt=display_name(existing))
        if not merged.get("stock_number"):
            merged["stock_number"] = default_stock_number()

        identity_changed = any(merged.get(k) != existing.get(k) for k in SLUG_FIELDS)
        if identity_changed or not existing.get("slug"):
            merged["slug"] = make_slug(*(merged.get(k) for k in SLUG_FIELDS))
        doc = _validated(merged)
        doc["images"] = self._revise_images(doc, merged["images"], uploads, keep_images)
        doc["views"] = existing.get("views", 0)
        doc["inquiries"] = existing.get("inquiries", 0)

        updated = self.store.update(COLLECTION, vehicle_id, doc)
        if updated is None:
            raise NotFoundError("Vehicle not found")
        return present(updated)

    def _revise_images(
        self,
        doc: Dict[str, Any],
        images: List[Dict[str, Any]],
        uploads: Optional[List[Upload]],
        keep_images: Optional[Iterable[str]],
    ) -> List[Dict[str, Any]]:
        name = display_name(doc)
        placeholder = self.images.settings.placeholder_image
        if keep_images is not None:
            keep = set(keep_images)
            for image in images:
                if image["url"] not in keep:
                    self.images.remove_url(image["url"])
            images = [image for image in images if image["url"] in keep]
        if uploads:
            images = [image for image in images if image["url"] != placeholder]
            stored = self.images.store(uploads, alt=name, has_primary=bool(images))
            images = images + stored.images
        if not images:
            return [self.images.fallback_image(name)]
        if not any(image["isPrimary"] for image in images):
            images[0]["isPrimary"] = True
        return images

    def delete(self, vehicle_id: str) -> Dict[str, Any]:
        """Remove the record, then its stored images one by one (best effort)."""
        doc = self.get(vehicle_id)
        if not self.store.delete(COLLECTION, vehicle_id):
            raise NotFoundError("Vehicle not found")
        images = normalize_images(doc.get("images"))
        removed = sum(1 for image in images if self.images.remove_url(image["url"]))
        if removed < len(images):
            logger.warning("Vehicle %s deleted; %d of %d images left in storage", vehicle_id, len(images) - removed, len(images))
        return {"message": "Vehicle deleted successfully", "images_removed": removed}

    def toggle_featured(self, vehicle_id: str) -> Dict[str, Any]:
        doc = self.get(vehicle_id)
        featured = not bool(doc.get("featured"))
        self.store.update(COLLECTION, vehicle_id, {"featured": featured})
        return {"message": "Featured status updated", "featured": featured}

    def bulk_update(self, ids: List[str], status: Optional[str] = None, featured: Optional[bool] = None) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if status is not None:
            if status not in VEHICLE_STATUSES:
                raise ValidationError(f"Invalid status: {status}")
            fields["status"] = status
        if featured is not None:
            fields["featured"] = bool(featured)
        if not ids:
            raise ValidationError("No vehicles selected")
        if not fields:
            raise ValidationError("Nothing to update")
        updated = self.store.update_many(COLLECTION, ids, fields)
        return {"updated": updated, **fields}

    def record_inquiry(self, vehicle_id: str) -> None:
        if self.store.increment(COLLECTION, vehicle_id, "inquiries") is None:
            logger.warning("Inquiry for unknown vehicle %s", vehicle_id)

    def migrate_images(self) -> Dict[str, int]:
        """Rewrite every stored images value into the uniform shape."""
        checked = rewritten = 0
        for doc in self.store.find(COLLECTION, {}):
            checked += 1
            images = normalize_images(doc.get("images"), alt=display_name(doc))
            if not images:
                images = [self.images.fallback_image(display_name(doc))]
            if images != doc.get("images"):
                self.store.update(COLLECTION, doc["id"], {"images": images})
                rewritten += 1
        logger.info("Image migration checked %d vehicles, rewrote %d", checked, rewritten)
        return {"checked": checked, "rewritten": rewritten}

    def stats(self) -> Dict[str, Any]:
        docs = self.store.find(COLLECTION, {})
        by_status: Dict[str, int] = {}
        by_body_type: Dict[str, int] = {}
        for doc in docs:
            status = doc.get("status") or "unknown"
            body = doc.get("body_type") or "unknown"
            by_status[status] = by_status.get(status, 0) + 1
            by_body_type[body] = by_body_type.get(body, 0) + 1
        prices = [float(doc["price"]) for doc in docs if doc.get("price") is not None]
        return {
            "total_vehicles": len(docs),
            "by_status": by_status,
            "by_body_type": by_body_type,
            "price_range": {
                "min": min(prices) if prices else None,
                "max": max(prices) if prices else None,
                "avg": round(sum(prices) / len(prices), 2) if prices else None,
            },
            "total_views": sum(int(doc.get("views") or 0) for doc in docs),
        }
