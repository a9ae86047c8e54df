from fastapi import Request

from core.cache import CacheHierarchy
from core.config import Settings
from core.dispatcher import Dispatcher
from services.page_service import ProfilePageService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_page_service(request: Request) -> ProfilePageService:
    return request.app.state.page_service


def get_cache_hierarchy(request: Request) -> CacheHierarchy:
    return request.app.state.cache


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher
