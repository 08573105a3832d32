from fastapi import FastAPI, Request, status
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

METHOD_NOT_SUPPORTED = "method not supported"


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> PlainTextResponse:
    detail = exc.detail
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        detail = METHOD_NOT_SUPPORTED
    return PlainTextResponse(str(detail), status_code=exc.status_code, headers=exc.headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
