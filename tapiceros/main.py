import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from . import app_context, db
from .app.billing import StripePaymentGateway
from .app.errors import AppError, ConfigurationError
from .app.identity import IdentityVerifier
from .app.routes import auth as auth_routes
from .app.routes import notifications as notifications_routes
from .app.routes import orders as orders_routes
from .app.routes import payments as payments_routes
from .app.routes import posts as posts_routes
from .app.routes import users as users_routes
from .config import load_config, missing_required_settings
from .middleware_logging import RequestLoggingMiddleware
from .push import create_push_provider, load_push_config

load_dotenv()

CONFIG = load_config()
PUSH_CONFIG = load_push_config()

logging.basicConfig(
    level=getattr(logging, CONFIG.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("tapiceros")

_STARTED_AT = time.monotonic()

app = FastAPI(title="Tapiceros API")

app.add_middleware(RequestLoggingMiddleware, enabled=CONFIG.request_logging)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(CONFIG.cors_origins),
    allow_credentials="*" not in CONFIG.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_routes.router)
app.include_router(users_routes.router)
app.include_router(posts_routes.router)
app.include_router(orders_routes.router)
app.include_router(notifications_routes.router)
app.include_router(payments_routes.router)


def _validation_details(exc: RequestValidationError) -> List[Dict[str, Any]]:
    details = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(location) or None, "message": error.get("msg")})
    return details


@app.exception_handler(AppError)
async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            extra={"route": request.url.path, "error_code": exc.code, "error": exc.message},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.payload)


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        message = f"Route {request.url.path} not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": "Validation failed", "errors": _validation_details(exc)},
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"route": request.url.path, "http_method": request.method})
    message = "Internal server error" if CONFIG.is_production else str(exc) or "Internal server error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": message},
    )


@app.on_event("startup")
def startup() -> None:
    missing = missing_required_settings(CONFIG)
    if missing:
        if CONFIG.is_production:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")
        logger.warning("Missing settings; related features are disabled", extra={"settings": missing})

    db.open_pool(CONFIG.db_settings(), minconn=CONFIG.db_pool_min, maxconn=CONFIG.db_pool_max)
    push_provider = create_push_provider(PUSH_CONFIG)
    app_context.configure(
        config=CONFIG,
        push_config=PUSH_CONFIG,
        payment_gateway=StripePaymentGateway(api_key=CONFIG.stripe_secret_key),
        push_provider=push_provider,
        identity_verifier=IdentityVerifier(
            domain=CONFIG.auth0_domain,
            audience=CONFIG.auth0_audience,
            issuer=CONFIG.auth0_issuer,
            cache_seconds=CONFIG.jwks_cache_seconds,
        ),
    )
    logger.info(
        "Tapiceros API started",
        extra={"environment": CONFIG.environment, "push_provider": push_provider.describe()},
    )


@app.on_event("shutdown")
def shutdown() -> None:
    db.close_pool()
    app_context.reset()


@app.get("/health")
def health() -> Dict[str, Any]:
    database_ok = db.ping()
    return {
        "success": True,
        "status": "OK" if database_ok else "DEGRADED",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - _STARTED_AT, 3),
        "environment": CONFIG.environment,
        "database": "connected" if database_ok else "unavailable",
    }
