"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.comeback.config import settings
from src.comeback.features.admin.handlers import router as admin_router
from src.comeback.features.auth.handlers import router as auth_router
from src.comeback.features.catalog.handlers import router as catalog_router
from src.comeback.features.dashboard.handlers import router as dashboard_router
from src.comeback.features.musics.handlers import router as musics_router
from src.comeback.services.auth import (
    AuthorizationError,
    JWKSCache,
    LoginRequired,
    TokenVerifier,
    set_token_verifier,
)
from src.comeback.services.database import init_supabase_clients, set_supabase_clients
from src.comeback.services.rate_limiter import limiter

logger = logging.getLogger(__name__)

# Global JWKS cache instance for cleanup
_jwks_cache: JWKSCache | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle (startup and shutdown)."""
    global _jwks_cache

    # Startup
    await init_supabase_clients()

    if settings.use_local_jwt_verification:
        try:
            # Supabase JWKS endpoint is at /auth/v1/.well-known/jwks.json
            jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
            _jwks_cache = JWKSCache(jwks_url=jwks_url, cache_ttl=settings.jwks_cache_ttl_seconds)
            await _jwks_cache.refresh_keys()

            # Supabase JWT issuer is the auth endpoint URL
            issuer = f"{settings.supabase_url}/auth/v1"
            set_token_verifier(
                TokenVerifier(
                    jwks_cache=_jwks_cache,
                    issuer=issuer,
                    audience=settings.jwt_audience,
                    leeway=settings.jwt_leeway_seconds,
                )
            )
            logger.info(
                "Token verifier initialized",
                extra={
                    "jwks_url": jwks_url,
                    "cache_ttl": settings.jwks_cache_ttl_seconds,
                    "issuer": issuer,
                },
            )
        except Exception as e:
            logger.error(
                f"Failed to initialize token verifier: {e}",
                exc_info=True,
                extra={"error_type": "token_verifier_init_failed"},
            )
            raise
    else:
        logger.warning("Local JWT verification disabled, every session token will be ignored")

    yield

    # Shutdown
    set_token_verifier(None)
    set_supabase_clients(None, None)
    if _jwks_cache is not None:
        try:
            await _jwks_cache.close()
            logger.info("Token verifier cleanup completed")
        except Exception as e:
            logger.error(f"Error during token verifier cleanup: {e}", exc_info=True)
        _jwks_cache = None


app = FastAPI(
    title="Comeback API",
    description="API for the K-pop comeback tracker: catalog, accounts and admin tools",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

origins = settings.cors_origins.split(",")
logger.info(f"Origins : {origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired) -> RedirectResponse:
    """Send unauthenticated visitors to the login page."""
    return RedirectResponse(exc.location, status_code=status.HTTP_303_SEE_OTHER)


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(auth_router, prefix=settings.api_v1_prefix)
app.include_router(catalog_router, prefix=settings.api_v1_prefix)
app.include_router(musics_router, prefix=settings.api_v1_prefix)
app.include_router(dashboard_router, prefix=settings.api_v1_prefix)
app.include_router(admin_router, prefix=settings.api_v1_prefix)


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str


@app.get("/health", response_model=HealthCheckResponse)
async def health_check() -> HealthCheckResponse:
    """Health check endpoint."""
    return HealthCheckResponse(status="healthy")
