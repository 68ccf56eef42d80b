import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.body_limit import BodySizeLimitMiddleware
from app.config import ConfigError, Settings, load_settings
from app.errors import RelayError
from app.log_config import setup_logger
from app.rate_limit import RateLimiter
from app.relay import GenerationRequest, ImageGenerationRelay, RelayResponse

RATE_LIMITED_PREFIX = "/api/"


def _client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def create_app(settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    settings = settings or load_settings()
    relay = ImageGenerationRelay(settings, transport=transport)
    limiter = RateLimiter(settings.rate_limit_max, settings.rate_limit_window)
    static_dir = Path(settings.static_dir)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        logger.info("API running on http://localhost:{}", settings.port)
        yield

    app = FastAPI(title="BananaRelay", lifespan=lifespan)
    app.state.settings = settings
    app.state.relay = relay
    app.state.rate_limiter = limiter

    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.max_body_bytes)

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if not request.url.path.startswith(RATE_LIMITED_PREFIX):
            return await call_next(request)

        decision = limiter.hit(_client_address(request))
        if not decision.allowed:
            logger.warning("Rate limit exceeded for {}", _client_address(request))
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests, please try again later."},
                headers={**limiter.headers(decision), "Retry-After": str(decision.reset_after)},
            )

        response = await call_next(request)
        response.headers.update(limiter.headers(decision))
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("{} {}", request.method, request.url.path)
        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        logger.warning("{} {} failed with {}: {}", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        logger.warning("{} {} failed with {}: {}", request.method, request.url.path, exc.status_code, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Invalid request body for {}: {}", request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"error": "Invalid request body."})

    @app.get("/api/ping")
    async def ping() -> dict[str, Any]:
        return {"ok": True, "ts": int(time.time() * 1000)}

    @app.post("/api/generate-image", response_model=RelayResponse)
    async def generate_image(payload: GenerationRequest | None = None) -> RelayResponse:
        return await relay.handle(payload or GenerationRequest())

    @app.get("/")
    async def root() -> FileResponse:
        return FileResponse(static_dir / "index.html")

    app.mount("/static", StaticFiles(directory=static_dir, check_dir=False), name="static")

    return app


def run() -> None:
    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error(str(exc))
        sys.exit(1)
    except ValidationError as exc:
        logger.error("Invalid configuration: {}", exc)
        sys.exit(1)

    setup_logger(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
