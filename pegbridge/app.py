# app.py
"""
HTTP gateway for the settlement bridge.

Run with:
    uvicorn pegbridge.app:app --host 127.0.0.1 --port 8300
or the `pegbridge-serve` console script.

Every route except /health requires the X-API-KEY header. Pipeline faults
are returned as a short error code; tracebacks only go to the server log.
"""
import hmac
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import BridgeConfig, load_config
from .errors import BridgeError
from .pay import create_pay_router
from .settlement import SettlementPipeline

PUBLIC_PATHS = {"/health"}


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), backtrace=False, diagnose=False)


def consteq(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load config and build the pipeline unless they were injected."""
    if app.state.config is None:
        app.state.config = load_config()
    cfg: BridgeConfig = app.state.config
    configure_logging(cfg.log_level)

    if app.state.pipeline is None:
        app.state.pipeline = SettlementPipeline.from_config(cfg)

    logger.info(
        f"[bridge] started chain_id={cfg.chain_id} token={cfg.settlement_token} "
        f"pair={cfg.pair_address} oracle={cfg.oracle_address or '-'} db={cfg.db_path}"
    )
    yield
    logger.info("[bridge] shutting down")


def create_app(
    config: Optional[BridgeConfig] = None,
    pipeline: Optional[SettlementPipeline] = None,
) -> FastAPI:
    app = FastAPI(title="pegbridge", lifespan=lifespan)
    app.state.config = config
    app.state.pipeline = pipeline

    @app.middleware("http")
    async def require_api_key(request: Request, call_next):
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)
        cfg = request.app.state.config
        api_key = request.headers.get("X-API-KEY") or ""
        if cfg is None or not api_key or not consteq(api_key, cfg.api_key):
            return JSONResponse({"error": "Unauthorized: Invalid API Key"}, status_code=401)
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        detail = exc.detail if exc.status_code != 404 or exc.detail != "Not Found" else "Not found"
        return JSONResponse({"error": detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def body_error(request: Request, exc: RequestValidationError):
        logger.warning(f"[http] {request.method} {request.url.path} invalid body: {exc.errors()}")
        return JSONResponse({"error": "Missing parameters"}, status_code=400)

    @app.exception_handler(BridgeError)
    async def bridge_error(request: Request, exc: BridgeError):
        if exc.status_code >= 500:
            logger.opt(exception=exc).error(f"[http] {request.method} {request.url.path} {exc.code}: {exc}")
        else:
            logger.warning(f"[http] {request.method} {request.url.path} {exc.code}: {exc}")
        return JSONResponse({"error": exc.code, "msg": exc.public_message}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.opt(exception=exc).error(f"[http] {request.method} {request.url.path} unhandled: {exc!r}")
        return JSONResponse({"error": "internal_error", "msg": "internal error"}, status_code=500)

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    app.include_router(create_pay_router(lambda: app.state.pipeline))
    return app


app = create_app()


def main() -> None:
    import uvicorn

    host = os.getenv("BRIDGE_HOST", "127.0.0.1")
    port = int(os.getenv("BRIDGE_PORT", "8300"))
    uvicorn.run("pegbridge.app:app", host=host, port=port)


if __name__ == "__main__":
    main()
