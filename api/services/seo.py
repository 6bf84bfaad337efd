"""robots.txt, sitemap.xml and web manifest for the public site."""

import os
from datetime import datetime
from typing import Any, Iterable
from xml.sax.saxutils import escape

SITE_URL = os.environ.get("SITE_URL", "https://tat-paper-generator.com").rstrip("/")

# (path, changefreq, priority)
STATIC_PAGES = [
    ("", "weekly", 1.0),
    ("/courses", "daily", 0.9),
    ("/auth/signin", "monthly", 0.5),
    ("/auth/signup", "monthly", 0.5),
    ("/dashboard", "weekly", 0.6),
    ("/papers/generate", "weekly", 0.8),
]

PRIVATE_PATHS = ["/admin/", "/api/", "/dashboard/", "/papers/generate/"]


def robots_txt(site_url: str = SITE_URL) -> str:
    lines = ["User-agent: *", "Allow: /"]
    lines += [f"Disallow: {path}" for path in PRIVATE_PATHS + ["/_next/", "/uploads/"]]
    lines += ["", "User-agent: Googlebot"]
    lines += [f"Allow: {path}" for path in ["/", "/courses/", "/auth/signin", "/auth/signup"]]
    lines += [f"Disallow: {path}" for path in PRIVATE_PATHS]
    lines += ["", f"Sitemap: {site_url}/sitemap.xml"]
    return "\n".join(lines) + "\n"


def _url_entry(loc: str, lastmod: datetime, changefreq: str, priority: float) -> str:
    return (
        "  <url>\n"
        f"    <loc>{escape(loc)}</loc>\n"
        f"    <lastmod>{lastmod.strftime('%Y-%m-%dT%H:%M:%SZ')}</lastmod>\n"
        f"    <changefreq>{changefreq}</changefreq>\n"
        f"    <priority>{priority:.1f}</priority>\n"
        "  </url>"
    )


def sitemap_xml(courses: Iterable, site_url: str = SITE_URL, now: datetime = None) -> str:
    """Static pages plus one weekly entry per active course."""
    now = now or datetime.utcnow()
    entries = [
        _url_entry(f"{site_url}{path}", now, freq, priority)
        for path, freq, priority in STATIC_PAGES
    ]
    for course in courses:
        entries.append(_url_entry(
            f"{site_url}/courses/{course.id}",
            course.updated_at or course.created_at or now,
            "weekly",
            0.7,
        ))
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
        + "\n".join(entries)
        + "\n</urlset>\n"
    )


def web_manifest() -> dict[str, Any]:
    return {
        "name": "TAT Paper Generator - AI-Powered Exam Papers",
        "short_name": "TAT Paper Gen",
        "description": "Generate high-quality exam papers using AI with course-specific materials and automated grading.",
        "start_url": "/",
        "display": "standalone",
        "background_color": "#ffffff",
        "theme_color": "#2563eb",
        "orientation": "portrait",
        "categories": ["education", "productivity", "business"],
        "lang": "en",
        "icons": [
            {"src": "/icon-192.png", "sizes": "192x192", "type": "image/png"},
            {"src": "/icon-512.png", "sizes": "512x512", "type": "image/png"},
            {"src": "/icon-maskable-192.png", "sizes": "192x192", "type": "image/png", "purpose": "maskable"},
            {"src": "/icon-maskable-512.png", "sizes": "512x512", "type": "image/png", "purpose": "maskable"},
        ],
    }
