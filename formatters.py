"""Display helpers shared by notification bodies and the sitemap."""
import re
from typing import Optional, Union

Number = Union[int, float]


def digits_only(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def format_phone_number(phone: Optional[str]) -> str:
    """Render a 10 digit US number as ``(352) 933-5181``; anything else is returned as-is."""
    if not phone:
        return "N/A"
    cleaned = digits_only(phone)
    if len(cleaned) == 11 and cleaned.startswith("1"):
        cleaned = cleaned[1:]
    if len(cleaned) == 10:
        return f"({cleaned[:3]}) {cleaned[3:6]}-{cleaned[6:]}"
    return phone


def format_currency(amount: Optional[Number]) -> str:
    if amount is None:
        return "N/A"
    if float(amount).is_integer():
        return f"${amount:,.0f}"
    return f"${amount:,.2f}"


def format_mileage(mileage: Optional[Number]) -> str:
    if mileage is None:
        return "N/A"
    return f"{int(mileage):,} miles"


def vehicle_title(info: Optional[dict]) -> str:
    if not info:
        return ""
    parts = [str(info.get(key)) for key in ("year", "make", "model") if info.get(key)]
    return " ".join(parts)
