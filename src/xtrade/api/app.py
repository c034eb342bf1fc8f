import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.requests import Request

from xtrade.api.routes import router
from xtrade.errors import XTradeError
from xtrade.ipc import IpcServer
from xtrade.online import LocalClient, SharedStore

logger = logging.getLogger("xtrade.api")


def create_app(
    *,
    shared: SharedStore,
    static_files_path: Optional[Path] = None,
    ipc_server: Optional[IpcServer] = None,
) -> FastAPI:
    transport = LocalClient(shared)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting xtrade API...")
        if ipc_server is not None:
            ipc_server.start()
        try:
            yield
        finally:
            logger.info("Shutting down...")
            if ipc_server is not None:
                ipc_server.stop()
            logger.info("xtrade API stopped")

    app = FastAPI(lifespan=lifespan)
    app.state.shared = shared
    app.state.transport = transport

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(XTradeError)
    async def handle_xtrade_error(request: Request, exc: XTradeError):
        logger.info(
            "request_failed",
            extra={"op": f"{request.method} {request.url.path}", "reason": exc.kind},
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": str(exc.errors()), "kind": "validation"},
        )

    app.include_router(router)

    if static_files_path is not None:
        if static_files_path.is_dir():
            app.mount("/ui", StaticFiles(directory=static_files_path, html=True), name="ui")
        else:
            logger.warning("web_client_missing", extra={"path": str(static_files_path)})

    return app
