# server_manager.py
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from aiohttp import web

from core.application import create_application
from core.auth_manager import AuthManager
from core.certificate_manager import CertificateManager
from core.config_manager import ConfigManager, get_config
from core.dispatcher import Dispatcher
from core.page_server import PageServer
from core.proxy.asset_mirror import AssetMirror, AssetFetcher
from core.proxy.cache_manager import AssetCache
from core.proxy.upstream_resolver import UpstreamResolver
from core.tunnel import TunnelBackend, create_tunnel
from utils.port_utils import check_port_availability

logger = logging.getLogger(__name__)


@dataclass
class EdgeComponents:
    """Компоненты сервера, собранные из конфигурации"""
    cache: AssetCache
    resolver: UpstreamResolver
    fetcher: AssetFetcher
    mirror: AssetMirror
    tunnel: TunnelBackend
    dispatcher: Dispatcher
    pages: PageServer
    auth: Optional[AuthManager]
    app: web.Application

    async def cleanup(self):
        await self.fetcher.cleanup()
        await self.tunnel.cleanup()


def build_components(config: ConfigManager) -> EdgeComponents:
    """Собирает приложение из конфигурации"""
    cache = AssetCache(ttl_seconds=float(config.get('cache.ttl_seconds')))
    resolver = UpstreamResolver(config.get_upstreams())
    fetcher = AssetFetcher(
        timeout=float(config.get('mirror.timeout', 30.0)),
        max_concurrent=int(config.get('mirror.max_concurrent_fetches', 50))
    )
    mirror = AssetMirror(
        cache=cache,
        resolver=resolver,
        fetcher=fetcher,
        namespace=config.get('mirror.namespace', '/e/'),
        binary_extensions=config.get('mirror.binary_extensions', ['.unityweb'])
    )

    tunnel_prefix = config.get('tunnel.prefix', '/fq/')
    tunnel = create_tunnel(
        config.get('tunnel.backend_url'),
        prefix=tunnel_prefix,
        timeout=float(config.get('tunnel.timeout', 30.0))
    )
    dispatcher = Dispatcher(tunnel)

    pages = PageServer(
        static_dir=config.get('pages.static_dir'),
        routes=config.get('pages.routes'),
        not_found_page=config.get('pages.not_found_page', '404.html')
    )

    auth = None
    if config.get('auth.challenge', False):
        auth = AuthManager(config.get('auth.users', {}), realm=config.get('auth.realm', 'Interstellar'))

    app = create_application(dispatcher, mirror, pages, auth=auth, cors_prefix=tunnel_prefix)

    return EdgeComponents(
        cache=cache,
        resolver=resolver,
        fetcher=fetcher,
        mirror=mirror,
        tunnel=tunnel,
        dispatcher=dispatcher,
        pages=pages,
        auth=auth,
        app=app
    )


class ServerManager:
    def __init__(self, config: Optional[ConfigManager] = None):
        self.config = config or get_config()
        self.is_running = False
        self.host = self.config.get('server.host', '0.0.0.0')
        self.port = int(self.config.get('server.port', 8080))
        self.tls_enabled = bool(self.config.get('tls.enabled', False))

        self.components: Optional[EdgeComponents] = None
        self.runner = None
        self.site = None
        self.loop = None
        self.thread = None
        self.started_at = None

        # Error tracking
        self.last_error_type = None  # 'port', 'tls', 'config', 'unknown'
        self.last_error_details = None

    def start(self) -> bool:
        """
        Запуск сервера в отдельном потоке с собственным event loop

        Returns:
            bool: True если успешно запущен
        """
        if self.is_running:
            logger.warning("⚠️ Сервер уже запущен")
            return False

        self.last_error_type = None
        self.last_error_details = None

        port_available, port_message = check_port_availability(self.port, self.host)
        if not port_available:
            logger.error(f"❌ {port_message}")
            self.last_error_type = 'port'
            self.last_error_details = port_message
            return False

        ssl_context = None
        if self.tls_enabled:
            certificate_manager = CertificateManager(
                cert_path=self.config.get('tls.cert_path'),
                key_path=self.config.get('tls.key_path'),
                hostname=self.config.get('tls.hostname', 'localhost')
            )
            ssl_context = certificate_manager.create_ssl_context()
            if ssl_context is None:
                self.last_error_type = 'tls'
                self.last_error_details = f"Не удалось подготовить сертификат {certificate_manager.cert_path}"
                logger.error(f"❌ {self.last_error_details}")
                return False

        try:
            self.components = build_components(self.config)
        except (ValueError, TypeError) as e:
            self.last_error_type = 'config'
            self.last_error_details = str(e)
            logger.error(f"❌ Ошибка конфигурации: {e}")
            return False

        self.thread = threading.Thread(
            target=self._run_server,
            args=(ssl_context,),
            daemon=True
        )
        self.thread.start()

        # Ждём запуска (максимум 5 секунд)
        for _ in range(50):
            if self.is_running or not self.thread.is_alive():
                break
            time.sleep(0.1)

        if not self.is_running:
            logger.error("❌ Сервер не запустился за отведенное время")
            if self.last_error_type is None:
                self.last_error_type = 'unknown'
                self.last_error_details = "Server did not start within 5 seconds"
            return False

        scheme = 'https' if ssl_context else 'http'
        logger.info(f"🌍 Interstellar running on {scheme}://{self.host}:{self.port}")
        return True

    def _run_server(self, ssl_context):
        """Запускает сервер в отдельном event loop"""
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)

        try:
            self.loop.run_until_complete(self._start_server(ssl_context))
            if self.is_running:
                self.loop.run_forever()
        except Exception as e:
            logger.error(f"❌ Ошибка в event loop: {e}", exc_info=True)
            self.is_running = False
        finally:
            self.loop.close()

    async def _start_server(self, ssl_context):
        """Асинхронный запуск сервера"""
        try:
            self.runner = web.AppRunner(self.components.app, access_log=None)
            await self.runner.setup()

            self.site = web.TCPSite(
                self.runner,
                host=self.host,
                port=self.port,
                ssl_context=ssl_context,
            )
            await self.site.start()

            self.started_at = time.time()
            self.is_running = True
            logger.info(f"✅ Сервер успешно запущен на порту {self.port}")

        except OSError as e:
            logger.error(f"❌ Ошибка запуска сервера: {e}")
            self.last_error_type = 'port'
            self.last_error_details = str(e)
            self.is_running = False

    def stop(self):
        """Остановка сервера"""
        if not self.is_running:
            logger.warning("⚠️ Сервер не запущен")
            return

        logger.info("🛑 Stopping server...")
        self.is_running = False

        try:
            if self.loop and self.loop.is_running():
                future = asyncio.run_coroutine_threadsafe(self._stop_server(), self.loop)
                try:
                    future.result(timeout=10)
                finally:
                    self.loop.call_soon_threadsafe(self.loop.stop)

            if self.thread and self.thread.is_alive():
                self.thread.join(timeout=5)

        except Exception as e:
            logger.error(f"❌ Error stopping server: {e}", exc_info=True)

        self._log_session_stats()
        logger.info("✅ Server stopped")

    async def _stop_server(self):
        """Асинхронная остановка сервера"""
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()
        if self.components:
            await self.components.cleanup()
        logger.debug("✅ Сервер успешно остановлен")

    def _log_session_stats(self):
        if not self.components:
            return

        dispatcher_stats = self.components.dispatcher.get_stats()
        cache_stats = self.components.cache.get_stats()
        logger.info(
            f"📊 Session statistics:\n"
            f"   App requests: {dispatcher_stats['app_requests']}\n"
            f"   Tunnel requests: {dispatcher_stats['tunnel_requests']}\n"
            f"   Tunnel upgrades: {dispatcher_stats['tunnel_upgrades']}\n"
            f"   Rejected upgrades: {dispatcher_stats['rejected_upgrades']}\n"
            f"   Cache: {cache_stats['size']} entries, hit rate {cache_stats['hit_rate']}"
        )

    def get_status(self) -> dict:
        """Возвращает статус сервера"""
        status = {
            'running': self.is_running,
            'host': self.host,
            'port': self.port,
            'tls': self.tls_enabled,
            'uptime': int(time.time() - self.started_at) if self.is_running and self.started_at else 0,
        }

        if self.last_error_type:
            status['error'] = {
                'type': self.last_error_type,
                'details': self.last_error_details
            }

        if self.components:
            status['dispatcher'] = self.components.dispatcher.get_stats()
            status['mirror'] = self.components.mirror.get_stats()
            status['cache'] = self.components.cache.get_stats()
            status['tunnel'] = self.components.tunnel.get_stats()

        return status


# Синглтон для глобального доступа
_server_manager = None


def get_server_manager() -> ServerManager:
    """Возвращает глобальный экземпляр ServerManager"""
    global _server_manager
    if _server_manager is None:
        _server_manager = ServerManager()
    return _server_manager
