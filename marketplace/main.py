from typing import Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import get_password_hash
from .config import Settings
from .crud import accounts as account_crud
from .database import build_engine, build_session_factory
from .errors import MarketplaceError
from .messaging import EventPublisher
from .models import Base
from .notifications import NotificationDispatcher, SmtpEmailer
from .routers import (
    admin_router,
    auth_router,
    buyer_router,
    category_router,
    order_router,
    product_router,
    seller_router,
)
from .storage import MediaStorage
from .utils.logging import configure_logging

logger = structlog.get_logger(__name__)

GENERIC_ERROR = "An unexpected error occurred. Please try again later."


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    message = str(errors[0].get("msg", "Invalid request"))
    # pydantic prefixes messages raised from custom validators
    return message.removeprefix("Value error, ")


def init_admin_user(app: FastAPI) -> None:
    settings: Settings = app.state.settings
    if not (settings.admin_email and settings.admin_password):
        return

    db = app.state.session_factory()
    try:
        if account_crud.get_account_by_email(db, settings.admin_email) is None:
            account_crud.create_account(
                db,
                name=settings.admin_name,
                email=settings.admin_email,
                hashed_password=get_password_hash(settings.admin_password),
                role="admin",
            )
            logger.info("admin.provisioned", email=settings.admin_email)
    finally:
        db.close()


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceError)
    async def _marketplace_error(request: Request, exc: MarketplaceError):
        return _error(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
            return _error(exc.status_code, "Route not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, _first_validation_message(exc))

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception("request.failed", method=request.method, path=request.url.path)
        if app.state.settings.is_production:
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_ERROR)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or GENERIC_ERROR, error=type(exc).__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    emailer=None,
    dispatcher: Optional[NotificationDispatcher] = None,
    storage: Optional[MediaStorage] = None,
    events: Optional[EventPublisher] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.app_env)

    app = FastAPI(
        title="Marketplace Service",
        description="Multi-role marketplace: catalog, orders, reviews and notifications",
        version="1.0.0",
    )

    engine = build_engine(settings.database_url)
    # Create database tables
    Base.metadata.create_all(bind=engine)

    emailer = emailer or SmtpEmailer.from_settings(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.emailer = emailer
    app.state.dispatcher = dispatcher or NotificationDispatcher(
        emailer,
        max_workers=settings.notify_max_workers,
        max_pending=settings.notify_max_pending,
    )
    app.state.storage = storage or MediaStorage.from_settings(settings)
    app.state.events = events or EventPublisher(settings.rabbitmq_url, settings.events_exchange)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_exception_handlers(app)

    # Include routers
    app.include_router(auth_router.router)
    app.include_router(admin_router.router)
    app.include_router(seller_router.router)
    app.include_router(buyer_router.router)
    app.include_router(product_router.router)
    app.include_router(order_router.router)
    app.include_router(category_router.router)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")

    @app.on_event("startup")
    def _startup() -> None:
        if not app.state.emailer.configured:
            logger.warning("email.not_configured", detail="order and password mails will not be delivered")
        init_admin_user(app)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.dispatcher.flush(timeout=settings.notify_timeout_seconds)
        app.state.dispatcher.shutdown()

    @app.get("/")
    def root():
        return {
            "success": True,
            "message": "Marketplace API is running",
            "version": "1.0.0",
            "endpoints": {
                "health": "/api/health",
                "auth": "/api/auth",
                "products": "/api/products",
                "categories": "/api/categories",
                "orders": "/api/orders",
            },
        }

    @app.get("/api/health")
    def health_check():
        return {"status": "ok", "message": "Server is running"}

    return app


app = create_app()
