"""
RMShop Order Core - Application Entry Point
=============================================
FastAPI app initialization, error handling, middleware, and router registration.
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import settings
from config.database import Base, engine
from common.exceptions import ShopError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("rmshop.app")


# ==========================================
# Import ALL models so Alembic/Base can see them
# ==========================================
from modules.user.models import User, UserAddress  # noqa: F401
from modules.catalog.models import Product  # noqa: F401
from modules.inventory.models import StockMovement  # noqa: F401
from modules.cart.models import Cart, CartItem  # noqa: F401
from modules.coupon.models import Coupon, CouponUsage  # noqa: F401
from modules.checkout.models import CheckoutSession, CheckoutItem  # noqa: F401
from modules.order.models import Order, OrderItem, OrderStatusLog, CancellationRequest  # noqa: F401
from modules.payment.models import Payment  # noqa: F401
from modules.wallet.models import Wallet, WalletTransaction  # noqa: F401
from modules.returns.models import ReturnRequest  # noqa: F401

# ==========================================
# Import routers
# ==========================================
from modules.cart.routes import router as cart_router
from modules.checkout.routes import router as checkout_router
from modules.coupon.routes import router as coupon_api_router
from modules.coupon.admin_routes import router as coupon_admin_router
from modules.order.routes import router as order_router
from modules.order.admin_routes import router as order_admin_router
from modules.payment.routes import router as payment_router
from modules.wallet.routes import router as wallet_router
from modules.returns.routes import router as returns_router
from modules.returns.admin_routes import router as returns_admin_router


@asynccontextmanager
async def lifespan(app):
    # Auto-create any missing tables (safe for existing tables)
    Base.metadata.create_all(bind=engine)
    logger.info(f"RMShop order core started (gateway={settings.PAYMENT_GATEWAY})")
    yield


# ==========================================
# Create App
# ==========================================
app = FastAPI(
    title="RMShop Order Core",
    description="Cart, checkout, orders, payments, cancellations and returns",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


# ==========================================
# Exception handler: ShopError → JSON
# ==========================================
@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.kind.value}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.kind.value}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ==========================================
# Middleware: Request Log
# ==========================================
_SKIP_PATHS = ("/health", "/favicon.ico")


@app.middleware("http")
async def request_logger(request: Request, call_next):
    path = request.url.path
    if path.startswith(_SKIP_PATHS):
        return await call_next(request)

    start = time.time()
    response = await call_next(request)
    elapsed_ms = int((time.time() - start) * 1000)
    logger.debug(
        f"{request.method} {path} {response.status_code} {elapsed_ms}ms "
        f"user={request.headers.get('x-user-id') or '-'}"
    )
    return response


# ==========================================
# Register Routers
# ==========================================
app.include_router(cart_router)
app.include_router(checkout_router)
app.include_router(coupon_api_router)
app.include_router(order_router)
app.include_router(payment_router)
app.include_router(wallet_router)
app.include_router(returns_router)
app.include_router(order_admin_router)
app.include_router(returns_admin_router)
app.include_router(coupon_admin_router)


# ==========================================
# Health check
# ==========================================
@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
