"""sitemap.xml built from the static pages plus every available vehicle."""
from datetime import datetime
from typing import Any, Dict, Iterable, List
from xml.sax.saxutils import escape

STATIC_PAGES = [
    ("/", "daily", 1.0),
    ("/about", "weekly", 0.8),
    ("/services", "weekly", 0.9),
    ("/inventory", "daily", 0.9),
    ("/specials", "weekly", 0.8),
    ("/contact", "monthly", 0.7),
    ("/appointment", "weekly", 0.9),
]


def _lastmod(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value) if value else ""


def pages_for(vehicles: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    pages = [{"url": url, "changefreq": freq, "priority": priority} for url, freq, priority in STATIC_PAGES]
    for vehicle in vehicles:
        pages.append({
            "url": f"/inventory/{vehicle['id']}",
            "changefreq": "weekly",
            "priority": 0.7,
            "lastmod": _lastmod(vehicle.get("updated_at")),
        })
    return pages


def render(site_url: str, pages: Iterable[Dict[str, Any]]) -> str:
    entries = []
    for page in pages:
        lines = [
            "  <url>",
            f"    <loc>{escape(site_url + page['url'])}</loc>",
            f"    <changefreq>{page['changefreq']}</changefreq>",
            f"    <priority>{page['priority']:.1f}</priority>",
        ]
        if page.get("lastmod"):
            lines.append(f"    <lastmod>{escape(page['lastmod'])}</lastmod>")
        lines.append("  </url>")
        entries.append("\n".join(lines))
    body = "\n".join(entries)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
        f"{body}\n"
        "</urlset>\n"
    )
