# core/dispatcher.py
"""Разделение входящих соединений между туннелем и приложением"""

import asyncio
import logging

from aiohttp import web

from core.tunnel import TunnelBackend, is_upgrade_request

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Единая точка входа для запросов и upgrade

    Решение принимается один раз на событие, до остальных middleware приложения.
    Запрос никогда не обрабатывается одновременно туннелем и приложением.
    """

    def __init__(self, tunnel: TunnelBackend):
        self.tunnel = tunnel
        self.stats = {
            'tunnel_requests': 0,
            'tunnel_upgrades': 0,
            'app_requests': 0,
            'rejected_upgrades': 0,
            'tunnel_errors': 0
        }

    async def dispatch(self, request: web.Request, handler) -> web.StreamResponse:
        claimed = self.tunnel.should_route(request)

        if is_upgrade_request(request):
            if not claimed:
                return self._terminate(request)

            self.stats['tunnel_upgrades'] += 1
            return await self._to_tunnel(self.tunnel.route_upgrade, request)

        if claimed:
            self.stats['tunnel_requests'] += 1
            return await self._to_tunnel(self.tunnel.route_request, request)

        self.stats['app_requests'] += 1
        return await handler(request)

    async def _to_tunnel(self, route, request: web.Request) -> web.StreamResponse:
        try:
            return await route(request)
        except (asyncio.CancelledError, web.HTTPException):
            raise
        except Exception as e:
            self.stats['tunnel_errors'] += 1
            logger.error(f"❌ Tunnel error: {request.method} {request.rel_url}: {e}", exc_info=True)
            return web.Response(text="Tunnel error", status=502)

    def _terminate(self, request: web.Request) -> web.StreamResponse:
        """Закрывает соединение: вне туннеля upgrade не поддерживается"""
        self.stats['rejected_upgrades'] += 1
        logger.debug(f"Upgrade rejected: {request.rel_url} ({request.headers.get('Upgrade')})")

        transport = request.transport
        if transport is not None:
            transport.close()

        # Ответ уже не дойдет до клиента, aiohttp проигнорирует запись в закрытый сокет
        return web.Response(status=400)

    def get_stats(self) -> dict:
        return dict(self.stats)


def dispatch_middleware(dispatcher: Dispatcher):
    """Middleware, который должен стоять первым в списке middlewares приложения"""

    @web.middleware
    async def middleware(request, handler):
        return await dispatcher.dispatch(request, handler)

    return middleware
