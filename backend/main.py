import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
import uvicorn
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from core.auth import auth_backend, fastapi_users
from core.config import Settings, settings as default_settings
from core.errors import setup_exception_handlers
from core.logging_config import configure_logging
from db.database import Database
from routers.analytics import router as analytics_router
from routers.auth import router as auth_router
from routers.branches import router as branches_router
from routers.categories import router as categories_router
from routers.inventory import router as inventory_router
from routers.outgoing import router as outgoing_router
from routers.payment_methods import router as payment_methods_router
from routers.remarks import router as remarks_router
from routers.sales import router as sales_router
from routers.users import router as users_router

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.log_level)
    database = Database(settings.database_url, echo=settings.database_echo)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await database.open()
        await database.create_all()
        logger.info("Stock API started (api %s)", settings.api_version)
        try:
            yield
        finally:
            await database.close()

    app = FastAPI(
        title="Stock Management API",
        description="Inventory, sales and outgoing stock with an audited movement ledger",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Default per-client budget, applied to each route.
    app.state.limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    setup_exception_handlers(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s %s %.1fms client=%s",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
            request.client.host if request.client else "-",
        )
        return response

    prefix = f"/api/{settings.api_version}"

    # Authentication routes (fastapi-users)
    app.include_router(fastapi_users.get_auth_router(auth_backend), prefix=f"{prefix}/auth/jwt", tags=["auth"])
    app.include_router(auth_router, prefix=f"{prefix}/auth", tags=["auth"])
    app.include_router(users_router, prefix=f"{prefix}/users", tags=["users"])

    app.include_router(inventory_router, prefix=f"{prefix}/inventory", tags=["inventory"])
    app.include_router(sales_router, prefix=f"{prefix}/sales", tags=["sales"])
    app.include_router(outgoing_router, prefix=f"{prefix}/outgoing", tags=["outgoing"])
    app.include_router(branches_router, prefix=f"{prefix}/branches", tags=["branches"])
    app.include_router(categories_router, prefix=f"{prefix}/categories", tags=["categories"])
    app.include_router(payment_methods_router, prefix=f"{prefix}/payment-methods", tags=["payment-methods"])
    app.include_router(remarks_router, prefix=f"{prefix}/remarks", tags=["remarks"])
    app.include_router(analytics_router, prefix=f"{prefix}/analytics", tags=["analytics"])

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "OK", "version": app.version}

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
