# storefront/routes/shop.py
"""Shop routes. Catalog and checkout logic live elsewhere; these only use the session."""

from fastapi import APIRouter, Form, Request

router = APIRouter()


def _view(request: Request, page_title: str, path: str, **extra):
    """View context: the pipeline's locals plus page-specific values"""
    user = request.state.user
    return {
        **request.state.view_locals,
        "pageTitle": page_title,
        "path": path,
        "user": user.public_view() if user else None,
        **extra,
    }


@router.get("/")
async def get_index(request: Request):
    session = request.state.session
    return _view(
        request,
        "Shop",
        "/",
        cart=session.data.get("cart", []),
        messages=session.consume_flash("info"),
    )


@router.post("/cart")
async def post_cart(request: Request, productId: str = Form(...)):
    session = request.state.session
    cart = session.data.setdefault("cart", [])
    cart.append(productId)
    return _view(request, "Your Cart", "/cart", cart=cart)
