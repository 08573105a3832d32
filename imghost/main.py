import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from imghost.api.errors import register_exception_handlers
from imghost.api.routers import images as images_router
from imghost.core.config import Settings, get_settings
from imghost.services.storage import ObjectStore, create_object_store
from imghost.view import IndexView

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "store", None) is None:
        app.state.store = create_object_store(app.state.settings)
    await app.state.store.check()
    logger.info("Object store %s ready", app.state.store.scheme)
    yield


def create_app(
    settings: Settings | None = None,
    store: ObjectStore | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="Image Host",
        redirect_slashes=False,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.view = IndexView(settings.template_path)

    register_exception_handlers(app)
    app.include_router(images_router.router)

    return app
