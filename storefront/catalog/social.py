"""Social sharing metadata (Open Graph / Twitter cards) for product pages."""

from __future__ import annotations

import html
from typing import Any

from storefront.config import settings
from storefront.models import Product
from storefront.receipts.formatting import format_naira

MAX_DESCRIPTION_CHARS = 160

SOCIAL_CRAWLERS = (
    "facebookexternalhit",
    "facebot",
    "twitterbot",
    "whatsapp",
    "telegrambot",
    "linkedinbot",
    "skypeuripreview",
)


def _absolute(url: str, site_url: str) -> str:
    if not url or url.startswith(("http://", "https://")):
        return url
    return f"{site_url.rstrip('/')}/{url.lstrip('/')}"


def product_social_data(
    product: Product,
    path: str | None = None,
    *,
    site_url: str | None = None,
    store_name: str | None = None,
) -> dict[str, Any]:
    """Share card for a product page."""
    site = (site_url or settings.site_url).rstrip("/")
    store = store_name or settings.store_name
    availability = "in stock" if product.in_stock else "out of stock"

    description = product.description or (
        f"{product.name} - Premium quality {product.category or 'tool'} available at {store}. "
        f"Starting from {format_naira(product.price)}. "
        + ("In stock and ready to ship!" if product.in_stock else "Contact us for availability.")
    )
    return {
        "title": f"{product.name} | {store}",
        "description": description[:MAX_DESCRIPTION_CHARS],
        "image": _absolute(product.image_url, site) or f"{site}/logo-2.png",
        "url": f"{site}{path or f'/product/{product.id}'}",
        "type": "product",
        "price": product.price,
        "currency": settings.currency,
        "availability": availability,
        "category": product.category,
        "brand": store,
    }


def store_social_data(*, site_url: str | None = None, store_name: str | None = None) -> dict[str, Any]:
    """Share card for the landing page."""
    site = (site_url or settings.site_url).rstrip("/")
    store = store_name or settings.store_name
    return {
        "title": f"{store} - Premium Tools & Equipment",
        "description": (
            f"Discover premium quality tools and equipment at {store}. From professional-grade "
            "tools to everyday essentials, we have everything you need at competitive prices."
        )[:MAX_DESCRIPTION_CHARS],
        "image": f"{site}/og-image-store.jpg",
        "url": site,
        "type": "website",
    }


def is_social_crawler(user_agent: str | None) -> bool:
    agent = (user_agent or "").lower()
    return any(bot in agent for bot in SOCIAL_CRAWLERS)


def _esc(value: Any) -> str:
    return html.escape(str(value or ""), quote=True)


def render_meta_html(data: dict[str, Any]) -> str:
    """Minimal HTML page carrying the share card, for link-preview crawlers."""
    tags = [
        f'<meta property="og:title" content="{_esc(data["title"])}" />',
        f'<meta property="og:description" content="{_esc(data["description"])}" />',
        f'<meta property="og:image" content="{_esc(data["image"])}" />',
        f'<meta property="og:url" content="{_esc(data["url"])}" />',
        f'<meta property="og:type" content="{_esc(data.get("type", "website"))}" />',
        '<meta name="twitter:card" content="summary_large_image" />',
        f'<meta name="twitter:title" content="{_esc(data["title"])}" />',
        f'<meta name="twitter:description" content="{_esc(data["description"])}" />',
        f'<meta name="twitter:image" content="{_esc(data["image"])}" />',
    ]
    if "price" in data:
        tags.append(f'<meta property="product:price:amount" content="{_esc(data["price"])}" />')
        tags.append(
            f'<meta property="product:price:currency" content="{_esc(data.get("currency"))}" />'
        )
    head = "\n    ".join(tags)
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n    <meta charset=\"utf-8\">\n"
        f"    <title>{_esc(data['title'])}</title>\n    {head}\n"
        f'    <meta http-equiv="refresh" content="0;url={_esc(data["url"])}" />\n'
        "</head>\n<body></body>\n</html>\n"
    )
