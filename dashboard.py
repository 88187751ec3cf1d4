"""Admin dashboard figures."""
from datetime import date
from typing import Any, Dict

from database import DocumentStore


def dashboard_stats(store: DocumentStore) -> Dict[str, Any]:
    today = date.today().isoformat()
    stats = {
        "total_vehicles": store.count("vehicle"),
        "available_vehicles": store.count("vehicle", {"status": "available"}),
        "sold_vehicles": store.count("vehicle", {"status": "sold"}),
        "total_appointments": store.count("appointment"),
        "pending_appointments": store.count("appointment", {"status": "pending"}),
        "today_appointments": store.count("appointment", {"date": today}),
        "total_testimonials": store.count("testimonial", {"approved": True}),
        "unread_messages": store.count("contactmessage", {"read": False}),
    }
    return {
        "stats": stats,
        "recent_appointments": store.find("appointment", {}, sort=[("created_at", -1)], limit=5),
        "recent_vehicles": store.find("vehicle", {}, sort=[("created_at", -1)], limit=5),
    }
