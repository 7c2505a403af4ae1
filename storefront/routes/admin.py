# storefront/routes/admin.py
"""Admin routes. Product persistence belongs to the catalog service."""

import logging
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from storefront.routes.shop import _view

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


@router.post("/add-product")
async def post_add_product(
    request: Request,
    title: str = Form(...),
    price: float = Form(...),
    description: Optional[str] = Form(None)
):
    user = request.state.user
    if user is None:
        return RedirectResponse("/login", status_code=303)

    product = {"title": title, "price": price, "description": description}

    upload = request.state.upload
    if request.state.upload_key is None or upload is None:
        return JSONResponse(
            status_code=422,
            content=_view(
                request, "Add Product", "/admin/add-product",
                product=product, errorMessage="Attached file is not an image."
            )
        )

    product.update(imageKey=upload.storage_key, imageUrl=upload.location, userId=user.id)
    logger.info(f"🛒 Product {title!r} submitted with image {upload.storage_key}")
    return JSONResponse(status_code=201, content=_view(request, "Add Product", "/admin/add-product", product=product))
