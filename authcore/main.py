import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from authcore.api import auth, users
from authcore.api.middleware import add_middlewares
from authcore.config import settings
from authcore.db_init import init_db
from authcore.services.container import get_auth_services
from authcore.services.errors import AuthError, Unexpected
from authcore.startup_checks import (
    describe_database_url,
    parse_cors_origins,
    validate_database_url,
    validate_settings,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("authcore.startup")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup initiated.")
    database_url = settings.DATABASE_URL
    logger.info("Database: %s", describe_database_url(database_url))
    try:
        validate_database_url(database_url)
        validate_settings(settings)
        init_db()
    except Exception:
        logger.exception("Startup aborted.")
        raise

    services = get_auth_services()
    if settings.MAINTENANCE_ENABLED:
        services.scheduler.start()
    logger.info("Application startup completed successfully.")
    try:
        yield
    finally:
        services.scheduler.stop()
        logger.info("Application shutdown completed.")


app = FastAPI(
    title="Auth Core API",
    description=(
        "Authentication and session security: registration, login with lockout, "
        "refresh-token rotation, logout, Google sign-in and one-time code exchange. "
        "Use **Authorize** with the token from `POST /api/auth/login` for protected endpoints."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Auth", "description": "Register, login, refresh, logout and OAuth (JWT)."},
        {"name": "Users", "description": "Own password and active sessions (requires auth)."},
    ],
)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **exc.extra()},
        headers=exc.headers(),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = Unexpected()
    return JSONResponse(status_code=error.status_code, content={"detail": error.message})


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        **openapi_schema.get("components", {}).get("securitySchemes", {}),
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "JWT from POST /api/auth/login",
        },
    }
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

add_middlewares(app)
app.add_middleware(
    CORSMiddleware,
    allow_origins=parse_cors_origins(settings.CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After", "X-Request-Id"],
)

app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(users.router, prefix="/api/users", tags=["Users"])


@app.get("/")
def root():
    return {"status": "ok", "service": "Auth Core API"}


@app.get("/health")
def health():
    return {"status": "ok"}
