# nodelab/main.py
from contextlib import asynccontextmanager

import anyio.to_thread
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .api import routes as api_routes
from .core import config
from .core.controller import NodeController
from .core.exceptions import NodeLabError, ResourceError
from .core.log import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handle startup and shutdown events.
    """
    controller: NodeController = app.state.controller
    logger.info("Starting up...")
    controller.overlays.ensure_directories()
    if not controller.overlays.base_image_exists():
        logger.warning(f"Base image {controller.overlays.base_image} is missing; node creation will fail")
    yield
    logger.info("Shutting down...")
    await anyio.to_thread.run_sync(controller.shutdown)


async def nodelab_error_handler(request: Request, exc: NodeLabError):
    content = {"detail": exc.message}
    if isinstance(exc, ResourceError):
        content["completedSteps"] = exc.steps
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app(controller: NodeController | None = None) -> FastAPI:
    app = FastAPI(
        title="Node Lab API",
        lifespan=lifespan
    )
    app.state.controller = controller or NodeController()

    # The polling UI runs on a different origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(NodeLabError, nodelab_error_handler)
    app.include_router(api_routes.router)
    return app


app = create_app()


def run():
    import uvicorn

    configure_logging(config.LOG_LEVEL)
    logger.info(f"Starting Uvicorn server on {config.HOST}:{config.PORT}...")
    uvicorn.run(
        "nodelab.main:app",
        host=config.HOST,
        port=config.PORT,
        # One process: the node registry lives in memory.
        workers=1,
    )


if __name__ == "__main__":
    run()
