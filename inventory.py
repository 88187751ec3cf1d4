"""
Inventory query-string handling.

The storefront sends flat string parameters (``make=Toyota&minPrice=5000``).
``parse_inventory_query`` maps them onto equality and range constraints,
treats dropdown placeholders such as "All Makes" as no filter, and drops
numeric parameters that do not parse instead of failing the request.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 12
MAX_LIMIT = 100
DEFAULT_STATUS = "available"

SORT_MAP = {
    "newest": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "mileage_asc": [("mileage", 1)],
    "year_desc": [("year", -1), ("created_at", -1)],
}

# query parameter -> stored field
EQUALITY_PARAMS = {
    "make": "make",
    "model": "model",
    "bodyType": "body_type",
    "body_type": "body_type",
    "fuelType": "fuel_type",
    "fuel_type": "fuel_type",
    "transmission": "transmission",
    "condition": "condition",
}


def is_sentinel(value: Optional[str]) -> bool:
    """True for empty values and dropdown placeholders like "All Makes" or "Any"."""
    if value is None:
        return True
    text = str(value).strip().lower()
    return text in ("", "all", "any", "none", "null", "undefined") or text.startswith(("all ", "any "))


def _number(params: Mapping[str, Any], name: str, cast=float) -> Optional[Any]:
    raw = params.get(name)
    if is_sentinel(raw):
        return None
    try:
        return cast(float(str(raw).replace(",", "").replace("$", "").strip()))
    except (ValueError, OverflowError):
        logger.debug("Ignoring non-numeric %s=%r", name, raw)
        return None


def _flag(raw: Optional[str]) -> Optional[bool]:
    if is_sentinel(raw):
        return None
    text = str(raw).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    return None


@dataclass
class VehicleQuery:
    equals: Dict[str, Any]
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    max_mileage: Optional[int] = None
    sort: str = "newest"
    page: int = 1
    limit: int = DEFAULT_LIMIT

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def to_store_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = dict(self.equals)
        price: Dict[str, float] = {}
        if self.min_price is not None:
            price["$gte"] = self.min_price
        if self.max_price is not None:
            price["$lte"] = self.max_price
        if price:
            query["price"] = price
        if self.max_mileage is not None:
            query["mileage"] = {"$lte": self.max_mileage}
        return query

    def sort_spec(self) -> List[Tuple[str, int]]:
        return SORT_MAP.get(self.sort, SORT_MAP["newest"])


def parse_inventory_query(params: Mapping[str, Any], default_status: Optional[str] = DEFAULT_STATUS) -> VehicleQuery:
    equals: Dict[str, Any] = {}
    for param, field in EQUALITY_PARAMS.items():
        value = params.get(param)
        if not is_sentinel(value):
            equals[field] = str(value).strip()

    year = _number(params, "year", int)
    if year is not None:
        equals["year"] = year

    status = params.get("status", default_status)
    if not is_sentinel(status):
        equals["status"] = str(status).strip().lower()

    featured = _flag(params.get("featured"))
    if featured is not None:
        equals["featured"] = featured

    min_price = _number(params, "minPrice") if "minPrice" in params else _number(params, "min_price")
    max_price = _number(params, "maxPrice") if "maxPrice" in params else _number(params, "max_price")
    max_mileage = _number(params, "maxMileage", int) if "maxMileage" in params else _number(params, "mileage", int)

    page = _number(params, "page", int) or 1
    limit = _number(params, "limit", int) or DEFAULT_LIMIT
    sort = str(params.get("sort") or "newest").strip()
    if sort not in SORT_MAP:
        sort = "newest"

    return VehicleQuery(
        equals=equals,
        min_price=min_price,
        max_price=max_price,
        max_mileage=max_mileage,
        sort=sort,
        page=max(page, 1),
        limit=min(max(limit, 1), MAX_LIMIT),
    )
