# core/application.py
"""Сборка aiohttp приложения: диспетчер + прикладной слой"""

import asyncio
import logging
from typing import Optional

from aiohttp import web

from core.auth_manager import AuthManager
from core.dispatcher import Dispatcher, dispatch_middleware
from core.page_server import PageServer
from core.proxy.asset_mirror import AssetMirror

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = 'GET,HEAD,PUT,PATCH,POST,DELETE'


class ApplicationLayer:
    """
    Цепочка обработчиков прикладного слоя

    Каждый обработчик возвращает ответ или None (не мой запрос).
    Если никто не ответил — 404.
    """

    def __init__(self, mirror: AssetMirror, pages: PageServer):
        self.mirror = mirror
        self.pages = pages
        self.handlers = [mirror.handle, pages.serve_static, pages.serve_page]

    async def handle(self, request: web.Request) -> web.StreamResponse:
        for handler in self.handlers:
            response = await handler(request)
            if response is not None:
                return response
        raise web.HTTPNotFound()


def error_pages_middleware(pages: PageServer):
    """404 и необработанные ошибки отдаются страницей ошибки"""

    @web.middleware
    async def middleware(request, handler):
        try:
            return await handler(request)
        except web.HTTPNotFound:
            return pages.error_page(404)
        except (asyncio.CancelledError, web.HTTPException):
            raise
        except Exception as e:
            logger.error(f"❌ Unhandled error: {request.method} {request.rel_url}: {e}", exc_info=True)
            return pages.error_page(500)

    return middleware


def cors_middleware(prefix: str):
    """Отражает Origin для путей под префиксом туннеля"""
    base = prefix.rstrip('/')

    def matches(path: str) -> bool:
        return path == base or path.startswith(base + '/')

    @web.middleware
    async def middleware(request, handler):
        if not matches(request.rel_url.raw_path):
            return await handler(request)

        origin = request.headers.get('Origin')
        if request.method == 'OPTIONS':
            # Любой OPTIONS под префиксом считается preflight
            response = web.Response(status=204)
            response.headers['Access-Control-Allow-Methods'] = CORS_ALLOW_METHODS
            requested = request.headers.get('Access-Control-Request-Headers')
            if requested:
                response.headers['Access-Control-Allow-Headers'] = requested
        elif not origin:
            return await handler(request)
        else:
            response = await handler(request)

        if origin:
            response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Vary'] = 'Origin'
        return response

    return middleware


def create_application(dispatcher: Dispatcher, mirror: AssetMirror, pages: PageServer,
                       auth: Optional[AuthManager] = None,
                       cors_prefix: Optional[str] = None) -> web.Application:
    """
    Создает приложение

    Диспетчер стоит первым: запросы туннеля не проходят через middleware
    прикладного слоя (ошибки, авторизация, CORS).
    """
    middlewares = [dispatch_middleware(dispatcher), error_pages_middleware(pages)]
    if auth is not None:
        middlewares.append(auth.middleware())
    if cors_prefix:
        middlewares.append(cors_middleware(cors_prefix))

    app = web.Application(middlewares=middlewares)
    layer = ApplicationLayer(mirror, pages)
    app.router.add_route('*', '/{path:.*}', layer.handle)
    return app
