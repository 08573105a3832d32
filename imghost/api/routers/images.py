import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse, PlainTextResponse, StreamingResponse
from jinja2 import TemplateError
from pydantic import ValidationError
from starlette.background import BackgroundTask
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import ClientDisconnect

from imghost.api.deps import get_app_settings, get_store, get_view
from imghost.core.config import Settings
from imghost.core.security import is_authorized
from imghost.schemas import UploadForm
from imghost.services.storage import (
    CURSOR_START,
    NO_PREFIX,
    ObjectNotFoundError,
    ObjectStore,
    StorageError,
)
from imghost.services.uploads import store_upload
from imghost.view import IndexView

logger = logging.getLogger(__name__)

router = APIRouter(tags=["images"])

PAGE_SIZE = 100
MULTIPART_MEMORY_LIMIT = 32 << 20


def _internal_error(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)


@router.get("/", response_class=HTMLResponse)
async def list_images(
    request: Request,
    cursor: str | None = None,
    store: ObjectStore = Depends(get_store),
    view: IndexView = Depends(get_view),
):
    if not cursor:
        cursor = CURSOR_START

    try:
        items, next_cursor = await store.items(NO_PREFIX, cursor, PAGE_SIZE)
    except StorageError as exc:
        logger.error("Listing failed at cursor %r: %s", cursor, exc)
        raise _internal_error(str(exc)) from exc

    try:
        return view.render(request, items, next_cursor)
    except (TemplateError, OSError) as exc:
        logger.exception("Rendering %s failed", view.name)
        raise _internal_error(str(exc) or type(exc).__name__) from exc


@router.post("/", response_class=PlainTextResponse)
async def upload_image(
    request: Request,
    store: ObjectStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    if not is_authorized(request.headers.get("Authorization"), settings.auth_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")

    if "multipart/form-data" not in request.headers.get("Content-Type", ""):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Content-Type not accepted"
        )

    try:
        form = await request.form(max_part_size=MULTIPART_MEMORY_LIMIT)
    except StarletteHTTPException as exc:
        logger.error("Multipart parsing failed: %s", exc.detail)
        raise _internal_error(str(exc.detail)) from exc
    except ClientDisconnect as exc:
        logger.error("Client disconnected during upload")
        raise _internal_error("client disconnected") from exc

    try:
        fields: dict[str, str] = {}
        for name, value in form.multi_items():
            if not isinstance(value, UploadFile):
                fields[name] = value
        try:
            payload = UploadForm.model_validate(fields)
        except ValidationError as exc:
            raise _internal_error(str(exc)) from exc

        image = next(
            (value for value in form.getlist("image") if isinstance(value, UploadFile)),
            None,
        )
        if image is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no image")
        if image.size is None:
            raise _internal_error("image size unknown")

        try:
            await store_upload(store, payload.filetype, image.file, image.size)
        except StorageError as exc:
            logger.error("Storing upload failed: %s", exc)
            raise _internal_error(str(exc)) from exc
    finally:
        await form.close()

    return PlainTextResponse("OK")


@router.get("/image")
async def fetch_image(
    image: str | None = None,
    store: ObjectStore = Depends(get_store),
):
    if not image:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing image id")

    try:
        item = await store.item(image)
        stream = await store.open(item)
        await asyncio.to_thread(stream.prefetch)
    except ObjectNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StorageError as exc:
        logger.error("Fetching %s failed: %s", image, exc)
        raise _internal_error(str(exc)) from exc

    # The status line is committed with the first chunk; later read errors
    # only truncate the body.
    return StreamingResponse(stream, background=BackgroundTask(stream.close))
