"""Product catalog and social-share metadata routes."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse

from storefront.api.services import Services, get_services
from storefront.catalog.social import (
    is_social_crawler,
    product_social_data,
    render_meta_html,
    store_social_data,
)

router = APIRouter(prefix="/api", tags=["products"])


@router.get("/products")
async def list_products(category: str | None = None, services: Services = Depends(get_services)):
    products = await services.catalog.list_products()
    if category:
        products = [p for p in products if p.category.lower() == category.lower()]
    return {"products": [product.to_dict() for product in products]}


@router.get("/products/{product_id}")
async def get_product(product_id: str, services: Services = Depends(get_services)):
    product = await services.catalog.get_product(product_id)
    return product.to_dict()


@router.get("/social-meta/product/{product_id}")
async def product_social_meta(
    product_id: str,
    request: Request,
    services: Services = Depends(get_services),
):
    """Share card for a product page.

    Link-preview crawlers get a minimal HTML page with the meta tags;
    everyone else gets the card as JSON.
    """
    product = await services.catalog.get_product(product_id)
    data = product_social_data(
        product,
        site_url=services.settings.site_url,
        store_name=services.settings.store_name,
    )
    if is_social_crawler(request.headers.get("user-agent")):
        return HTMLResponse(render_meta_html(data))
    return data


@router.get("/social-meta/store")
async def store_social_meta(request: Request, services: Services = Depends(get_services)):
    data = store_social_data(
        site_url=services.settings.site_url, store_name=services.settings.store_name
    )
    if is_social_crawler(request.headers.get("user-agent")):
        return HTMLResponse(render_meta_html(data))
    return data
