import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from lotcontrol.api.v1 import index
from lotcontrol.api.v1 import auth
from lotcontrol.api.v1 import parameters
from lotcontrol.api.v1 import products
from lotcontrol.api.v1 import specifications
from lotcontrol.api.v1 import records
from lotcontrol.api.v1 import roles
from lotcontrol.api.v1 import permissions
from lotcontrol.api.v1 import users
from lotcontrol.api.v1 import audit

from lotcontrol.core.config import settings
from lotcontrol.core.exceptions import DomainError
from lotcontrol.core.logging import setup_logging
from lotcontrol.core.rate_limit import build_limiter, rate_limit_exceeded_handler
from lotcontrol.db.core import init_db

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(f"{settings.app_name} started")
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

# Middlewares
origins = []

if settings.allowed_hosts:
    origins = settings.allowed_hosts.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = build_limiter()
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
    return response


# Error envelope
@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    return JSONResponse(
        status_code=422,
        content={"error": {
            "kind": "validation_error",
            "message": first.get("msg", "Invalid request."),
            "field": ".".join(location) or None,
        }},
    )


# Register routes
app.include_router(index.router, prefix="/api/v1")
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Auth"])
app.include_router(
    parameters.router, prefix="/api/v1/parameters", tags=["Parameters"])
app.include_router(
    products.router, prefix="/api/v1/products", tags=["Products"])
app.include_router(specifications.router,
                   prefix="/api/v1/specifications", tags=["Specifications"])
app.include_router(records.router, prefix="/api/v1/records", tags=["Records"])
app.include_router(roles.router, prefix="/api/v1/roles", tags=["Roles"])
app.include_router(permissions.router,
                   prefix="/api/v1/permissions", tags=["Roles"])
app.include_router(users.router, prefix="/api/v1/users", tags=["Users"])
app.include_router(audit.router, prefix="/api/v1/audit", tags=["Audit"])

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=None,
    )
