import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.applications import Starlette
from starlette.routing import Mount

from calhook.auth import router as auth_router
from calhook.config import get_settings
from calhook.exceptions import (
    AuthExchangeError,
    ConfigurationError,
    NotAuthorizedError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from calhook.mcp_server import mcp
from calhook.routers.events import router as events_router
from calhook.routers.health import router as health_router

logger = logging.getLogger(__name__)


# --- FastAPI app ---

api = FastAPI(title="calhook", version="0.1.0")
api.include_router(health_router)
api.include_router(auth_router)
api.include_router(events_router)


# --- Exception handlers ---

@api.exception_handler(UnauthorizedError)
async def unauthorized_handler(request: Request, exc: UnauthorizedError):
    return JSONResponse(status_code=401, content={"ok": False, "message": str(exc)})


@api.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={"ok": False, "message": str(exc), "missing": exc.missing, "invalid": exc.invalid},
    )


@api.exception_handler(NotAuthorizedError)
async def not_authorized_handler(request: Request, exc: NotAuthorizedError):
    return JSONResponse(status_code=400, content={"ok": False, "message": str(exc), "authUrl": exc.auth_url})


@api.exception_handler(AuthExchangeError)
async def auth_exchange_error_handler(request: Request, exc: AuthExchangeError):
    return JSONResponse(status_code=400, content={"ok": False, "message": str(exc)})


@api.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error: %s", exc)
    return JSONResponse(status_code=500, content={"ok": False, "message": str(exc)})


@api.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    return JSONResponse(
        status_code=500,
        content={"ok": False, "message": str(exc), "upstreamStatus": exc.status},
    )


# --- Starlette root app ---

mcp_app = mcp.http_app(path="/", stateless_http=True)

app = Starlette(
    routes=[
        Mount("/mcp", app=mcp_app),
        Mount("/", app=api),
    ],
    lifespan=mcp_app.lifespan,
)


def run():
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "calhook.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
