# core/tunnel.py
"""
Адаптеры туннельной подсистемы.

Сам протокол туннеля реализуется внешним сервисом. Здесь только решение
"принадлежит ли запрос туннелю" и передача запроса/upgrade этому сервису.
"""

import asyncio
import logging
from typing import Optional

from aiohttp import web, WSMsgType, ClientSession, TCPConnector, ClientTimeout, ClientConnectorError, ClientError

logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = {
    'connection', 'keep-alive', 'proxy-authenticate', 'proxy-authorization',
    'te', 'trailers', 'transfer-encoding', 'upgrade', 'host', 'content-length',
}


def is_upgrade_request(request: web.Request) -> bool:
    """Запрос на смену протокола (Connection: upgrade + Upgrade)"""
    if not request.headers.get('Upgrade'):
        return False
    connection = request.headers.get('Connection', '')
    return 'upgrade' in [token.strip().lower() for token in connection.split(',')]


class TunnelBackend:
    """Интерфейс туннельной подсистемы"""

    def should_route(self, request: web.Request) -> bool:
        raise NotImplementedError

    async def route_request(self, request: web.Request) -> web.StreamResponse:
        raise NotImplementedError

    async def route_upgrade(self, request: web.Request) -> web.StreamResponse:
        raise NotImplementedError

    async def cleanup(self):
        pass

    def get_stats(self) -> dict:
        return {}


class NullTunnel(TunnelBackend):
    """Туннель не настроен: ничего не забирает, upgrade некуда передать"""

    def should_route(self, request):
        return False

    async def route_request(self, request):
        raise RuntimeError("NullTunnel never claims requests")

    async def route_upgrade(self, request):
        raise RuntimeError("NullTunnel never claims upgrades")


class ForwardingTunnel(TunnelBackend):
    """
    Передает запросы с префиксом туннеля внешнему туннельному сервису

    Обычные запросы проксируются целиком, WebSocket upgrade связывается
    с сервисом пофреймово.
    """

    def __init__(self, backend_url: str, prefix: str = "/fq/", timeout: float = 30.0):
        """
        Args:
            backend_url: URL туннельного сервиса (например, http://127.0.0.1:8081)
            prefix: Префикс путей, принадлежащих туннелю
            timeout: Таймаут обычных запросов в секундах
        """
        if not backend_url:
            raise ValueError("Tunnel backend_url is required")

        self.backend_url = backend_url.rstrip('/')
        self.prefix = prefix
        self.timeout = timeout

        self.connector = None
        self.session = None

        self.stats = {
            'requests': 0,
            'upgrades': 0,
            'errors': 0
        }

        logger.debug(f"ForwardingTunnel: {prefix} -> {self.backend_url}")

    async def initialize(self):
        """Инициализация connection pool"""
        if self.connector is None:
            self.connector = TCPConnector(
                limit=100,
                limit_per_host=50,
                keepalive_timeout=60,
                force_close=False,
                enable_cleanup_closed=True
            )

        if self.session is None:
            # total=None: WebSocket сессии живут долго
            self.session = ClientSession(
                connector=self.connector,
                timeout=ClientTimeout(total=None, connect=10),
                auto_decompress=False
            )

    async def cleanup(self):
        """Очистка ресурсов"""
        if self.session:
            await self.session.close()
            self.session = None
        if self.connector:
            await self.connector.close()
            self.connector = None

    def should_route(self, request: web.Request) -> bool:
        return request.rel_url.raw_path.startswith(self.prefix)

    def _forward_headers(self, request: web.Request) -> dict:
        headers = {}
        for key, value in request.headers.items():
            key_lower = key.lower()
            if key_lower in HOP_BY_HOP_HEADERS or key_lower.startswith('sec-websocket-'):
                continue
            headers[key] = value

        if request.remote:
            headers['X-Forwarded-For'] = request.remote
        headers['X-Forwarded-Host'] = request.host
        headers['X-Forwarded-Proto'] = request.scheme
        return headers

    async def route_request(self, request: web.Request) -> web.StreamResponse:
        """Проксирует обычный запрос в туннельный сервис"""
        self.stats['requests'] += 1
        upstream_url = f"{self.backend_url}{request.rel_url}"

        await self.initialize()

        try:
            body = await request.read()

            async with self.session.request(
                method=request.method,
                url=upstream_url,
                headers=self._forward_headers(request),
                data=body or None,
                allow_redirects=False,
                timeout=ClientTimeout(total=self.timeout)
            ) as upstream_response:

                content = await upstream_response.read()

                response_headers = {}
                for key, value in upstream_response.headers.items():
                    key_lower = key.lower()
                    if key_lower in HOP_BY_HOP_HEADERS:
                        continue
                    response_headers[key] = value

                logger.debug(f"Tunnel response: {request.method} {request.rel_url} -> {upstream_response.status}")

                return web.Response(
                    body=content,
                    status=upstream_response.status,
                    headers=response_headers
                )

        except ClientConnectorError as e:
            self.stats['errors'] += 1
            logger.error(f"❌ Tunnel backend unreachable: {e}")
            return web.Response(text="Tunnel backend unavailable", status=502)

        except asyncio.TimeoutError:
            self.stats['errors'] += 1
            logger.error(f"❌ Tunnel backend timeout: {upstream_url}")
            return web.Response(text="Tunnel backend timeout", status=504)

        except ClientError as e:
            self.stats['errors'] += 1
            logger.error(f"❌ Tunnel request error: {e}", exc_info=True)
            return web.Response(text="Tunnel request failed", status=502)

    async def route_upgrade(self, request: web.Request) -> web.StreamResponse:
        """Связывает WebSocket клиента с WebSocket туннельного сервиса"""
        self.stats['upgrades'] += 1

        if request.headers.get('Upgrade', '').lower() != 'websocket':
            logger.warning(f"⚠️ Unsupported upgrade: {request.headers.get('Upgrade')}")
            transport = request.transport
            if transport is not None:
                transport.close()
            return web.Response(status=400)

        target_url = self.backend_url.replace('http', 'ws', 1) + str(request.rel_url)
        protocols = [p.strip() for p in request.headers.get('Sec-WebSocket-Protocol', '').split(',') if p.strip()]

        await self.initialize()

        try:
            server_ws = await self.session.ws_connect(
                target_url,
                headers=self._forward_headers(request),
                protocols=protocols
            )
        except (ClientError, asyncio.TimeoutError) as e:
            self.stats['errors'] += 1
            logger.error(f"❌ Tunnel WebSocket connect failed: {target_url}: {e}")
            return web.Response(text="Tunnel backend unavailable", status=502)

        client_ws = web.WebSocketResponse(protocols=[server_ws.protocol] if server_ws.protocol else ())
        try:
            await client_ws.prepare(request)
        except BaseException:
            # Handshake клиента отклонен, соединение с сервисом больше не нужно
            await server_ws.close()
            raise
        logger.debug(f"WebSocket bridged: {request.remote} <-> {target_url}")

        try:
            await asyncio.gather(
                self._pipe(client_ws, server_ws),
                self._pipe(server_ws, client_ws)
            )
        finally:
            await server_ws.close()
            await client_ws.close()

        return client_ws

    async def _pipe(self, source, destination):
        """Пересылает фреймы из source в destination до закрытия"""
        async for msg in source:
            if msg.type == WSMsgType.TEXT:
                await destination.send_str(msg.data)
            elif msg.type == WSMsgType.BINARY:
                await destination.send_bytes(msg.data)
            elif msg.type == WSMsgType.ERROR:
                logger.debug(f"WebSocket error: {source.exception()}")
                break

        if not destination.closed:
            await destination.close()

    def get_stats(self) -> dict:
        return dict(self.stats)


def create_tunnel(backend_url: Optional[str], prefix: str = "/fq/", timeout: float = 30.0) -> TunnelBackend:
    """Возвращает ForwardingTunnel, если сервис настроен, иначе NullTunnel"""
    if backend_url:
        logger.info(f"🔀 Tunnel enabled: {prefix} -> {backend_url}")
        return ForwardingTunnel(backend_url, prefix=prefix, timeout=timeout)

    logger.info("🔀 Tunnel backend not configured, upgrades will be rejected")
    return NullTunnel()
