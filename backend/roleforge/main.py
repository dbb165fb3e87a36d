import logging
import time
import traceback
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import Response

from roleforge.config import settings
from roleforge.database import engine, async_session
from roleforge.errors import RoleForgeError
from roleforge.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger("roleforge")

from roleforge.api.auth import router as auth_router  # noqa: E402
from roleforge.api.roles import router as roles_router  # noqa: E402
from roleforge.api.assignments import router as assignments_router  # noqa: E402
from roleforge.api.permissions import router as permissions_router  # noqa: E402
from roleforge.api.audit import router as audit_router  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection, optionally seed the system roles
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    if settings.bootstrap_seed:
        from roleforge.seed.system_roles import seed_super_admin, seed_system_roles

        async with async_session() as session:
            await seed_system_roles(session)
            if settings.bootstrap_admin_password:
                await seed_super_admin(session, settings.bootstrap_admin_email, settings.bootstrap_admin_password)
            await session.commit()
    yield
    await engine.dispose()


app = FastAPI(
    title="RoleForge",
    description="Role hierarchy, permission resolution and assignability for multi-tenant training management",
    version="0.1.0",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID", "X-Tenant-Id", "If-Match"],
    expose_headers=["ETag", "X-Request-ID"],
)

# ── Security headers middleware ──────────────────────────────────────────────
from roleforge.middleware.security_headers import SecurityHeadersMiddleware  # noqa: E402

app.add_middleware(SecurityHeadersMiddleware)

# ── Rate limiting middleware ─────────────────────────────────────────────────
from roleforge.middleware.rate_limit import RateLimitMiddleware  # noqa: E402

app.add_middleware(RateLimitMiddleware)

# ── Request context middleware (request ID + timing) ─────────────────────────
from roleforge.middleware.request_context import RequestContextMiddleware  # noqa: E402

app.add_middleware(RequestContextMiddleware)

# ── Prometheus metrics middleware ────────────────────────────────────────────
from roleforge.middleware.metrics import PrometheusMiddleware  # noqa: E402

app.add_middleware(PrometheusMiddleware)


@app.exception_handler(RoleForgeError)
async def domain_exception_handler(request: Request, exc: RoleForgeError):
    """Map the domain error taxonomy onto HTTP statuses."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": f"{type(exc).__name__}: {exc}", "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(roles_router)
app.include_router(assignments_router)
app.include_router(permissions_router)
app.include_router(audit_router)


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ── Health check ─────────────────────────────────────────────────────────────

_health_cache: dict = {}
_health_cache_ts: float = 0.0
HEALTH_CACHE_TTL = 10.0  # seconds


@app.get("/api/health")
async def health_check():
    global _health_cache, _health_cache_ts

    now = time.time()
    if _health_cache and (now - _health_cache_ts) < HEALTH_CACHE_TTL:
        return _health_cache

    components: dict = {}

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except (SQLAlchemyError, OSError) as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    r = aioredis.from_url(settings.redis_url, decode_responses=True, socket_connect_timeout=2)
    try:
        await r.ping()
        components["redis"] = {"status": "connected"}
    except (aioredis.RedisError, OSError) as exc:
        components["redis"] = {"status": "disconnected", "error": str(exc)}
    finally:
        await r.aclose()

    # Redis only backs rate limiting, which fails open
    if components["database"]["status"] != "connected":
        overall = "unhealthy"
    elif components["redis"]["status"] != "connected":
        overall = "degraded"
    else:
        overall = "healthy"

    result = {
        "status": overall,
        "environment": settings.environment,
        "components": components,
    }

    _health_cache = result
    _health_cache_ts = now
    return result
