"""
Storefront - Main FastAPI Application

Single entry point for checkout, admin, cron and Telegram webhook routes.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.bot import close_bot
from storefront.errors import StorefrontError
from storefront.logging import get_logger
from storefront.routers import (
    admin_router,
    coupons_router,
    cron_router,
    orders_router,
    telegram_router,
    vpn_router,
)
from storefront.routers.deps import shutdown_services
from storefront.services.database import close_database, init_database

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    await init_database()
    yield
    await shutdown_services()
    await close_bot()
    await close_database()


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="Storefront",
        description="Screenshot-paid digital storefront: order fulfillment and trust pipeline",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message, "code": exc.code},
        )

    app.include_router(orders_router)
    app.include_router(vpn_router)
    app.include_router(coupons_router)
    app.include_router(admin_router, prefix="/api/admin")
    app.include_router(cron_router)
    app.include_router(telegram_router)

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "ok", "service": "storefront"}

    return app


app = create_app()
