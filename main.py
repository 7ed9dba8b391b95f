import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from rich.logging import RichHandler

from api.router import api_router
from api.websocket import ws_manager
from config import FASTAPI_PORT, LOG_FILE
from core.context import AppContext
from core.errors import (
    AppError, NotFoundError, NetworkError, StorageError, ConcurrencyConflict,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (NotFoundError, 404),
    (NetworkError, 502),
    (StorageError, 500),
    (ConcurrencyConflict, 500),
)


def configure_logging(level: str = "INFO"):
    """Rich console output plus a plain log file in the data directory."""
    LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(
        level=level, format="%(message)s", datefmt="[%X]",
        handlers=[RichHandler(), file_handler],
    )


def error_status(exc: AppError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 400


def create_app(ctx: Optional[AppContext] = None) -> FastAPI:
    app = FastAPI(title="VoiceNote API")
    app.state.ctx = ctx
    app.include_router(api_router)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        status = error_status(exc)
        if isinstance(exc, ConcurrencyConflict):
            logger.error(f"{request.url.path}: {exc}")
            return JSONResponse(status_code=status, content={"detail": "Internal error"})
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.on_event("startup")
    async def startup_event():
        if app.state.ctx is None:
            app.state.ctx = AppContext()
        app.state.ctx.events.add_callback(ws_manager.broadcast)
        await app.state.ctx.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.ctx.stop()

    return app


if __name__ == "__main__":
    configure_logging()
    logger.info(f"Starting VoiceNote on 127.0.0.1:{FASTAPI_PORT}")
    uvicorn.run(create_app(), host="127.0.0.1", port=FASTAPI_PORT, log_level="warning")
