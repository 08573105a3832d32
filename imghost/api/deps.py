from fastapi import Request

from imghost.core.config import Settings
from imghost.services.storage import ObjectStore
from imghost.view import IndexView


def get_store(request: Request) -> ObjectStore:
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_view(request: Request) -> IndexView:
    return request.app.state.view
