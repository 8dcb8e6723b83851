from contextlib import asynccontextmanager
from typing import Optional
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db import PostgresBackend, create_pool
from .errors import BackendError, KasirError
from .local_store import LocalStore
from .logs import json_log
from .routers.auth import router as auth_router
from .routers.cart import router as cart_router
from .routers.catalog import router as catalog_router
from .routers.checkout import router as checkout_router
from .routers.history import router as history_router
from .routers.reports import router as reports_router
from .routers.settings import router as settings_router
from .services import Services, build_services


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Local API used by the POS front end. Pass `services` to run against prebuilt
    collaborators (tests); otherwise the lifespan opens the Postgres pool and the
    device-local store.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pool = None
        if services is not None:
            app.state.services = services
        else:
            pool = create_pool()
            await pool.open(wait=False)
            backend = PostgresBackend(pool)
            app.state.services = build_services(backend, LocalStore())
            try:
                await backend.ping()
                json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
            except BackendError as exc:
                json_log("warning", "startup.db_probe_failed", env=settings.env, error=str(exc))
        user = app.state.services.auth.restore()
        if user:
            json_log("info", "startup.session_restored", user_id=user["id"])
        try:
            yield
        finally:
            await app.state.services.cart.flush()
            if pool is not None:
                await pool.close()

    app = FastAPI(title="Kasir POS API", version=settings.api_version, lifespan=lifespan)

    @app.exception_handler(KasirError)
    def _kasir_error(_req: Request, exc: KasirError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    def _request_validation_error(_req: Request, exc: Exception):
        content = {"detail": "validation failed"}
        if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
            content["errors"] = jsonable_encoder(exc.errors())
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(Exception)
    def _unhandled_exception(req: Request, exc: Exception):
        rid = _current_request_id(req)
        json_log(
            "error",
            "http.request.unhandled",
            request_id=rid,
            method=req.method,
            path=req.url.path,
            error=str(exc),
        )
        content = {"detail": "internal error", "request_id": rid}
        if settings.env in {"local", "dev"}:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    # Correlation id + basic structured request logging.
    @app.middleware("http")
    async def _request_logging(request: Request, call_next):
        rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
        request.state.request_id = rid
        started = time.time()
        path = request.url.path
        method = request.method

        try:
            response = await call_next(request)
        except Exception as exc:
            dur_ms = int((time.time() - started) * 1000)
            json_log(
                "error",
                "http.request.error",
                request_id=rid,
                method=method,
                path=path,
                duration_ms=dur_ms,
                error=str(exc),
            )
            raise

        response.headers["X-Request-Id"] = rid
        if path != "/health":
            dur_ms = int((time.time() - started) * 1000)
            json_log(
                "info",
                "http.request",
                request_id=rid,
                method=method,
                path=path,
                status_code=response.status_code,
                duration_ms=dur_ms,
            )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(auth_router)
    app.include_router(cart_router)
    app.include_router(checkout_router)
    app.include_router(reports_router)
    app.include_router(history_router)
    app.include_router(catalog_router)
    app.include_router(settings_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "version": settings.api_version}

    return app


app = create_app()
