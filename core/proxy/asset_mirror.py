# core/proxy/asset_mirror.py
"""Зеркало удаленных ассетов для пространства /e/*"""

import asyncio
import logging
import mimetypes
import posixpath
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit

from aiohttp import web, ClientSession, TCPConnector, ClientTimeout, ClientError

from core.proxy.cache_manager import AssetCache, CacheEntry
from core.proxy.upstream_resolver import UpstreamResolver

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"

# Файлы Unity WebGL сборок, mimetypes их не знает или угадывает неверно
DEFAULT_BINARY_EXTENSIONS = (".unityweb",)

_mime = mimetypes.MimeTypes()
_mime.add_type("application/wasm", ".wasm")
_mime.add_type("text/javascript", ".mjs")


def infer_content_type(url: str, binary_extensions: Iterable[str] = DEFAULT_BINARY_EXTENSIONS) -> str:
    """
    Определяет Content-Type по расширению файла в URL

    Args:
        url: URL или путь ресурса
        binary_extensions: Расширения, для которых всегда отдается application/octet-stream

    Returns:
        str: MIME type
    """
    path = urlsplit(url).path
    ext = posixpath.splitext(path)[1].lower()
    if not ext:
        return OCTET_STREAM

    if ext in {e.lower() for e in binary_extensions}:
        return OCTET_STREAM

    content_type, _ = _mime.guess_type("file" + ext, strict=False)
    return content_type or OCTET_STREAM


@dataclass(frozen=True)
class FetchResult:
    """Результат запроса к источнику"""
    ok: bool
    status: int
    body: bytes = b""


class AssetFetcher:
    """GET-запросы к источникам ассетов через общий connection pool"""

    def __init__(self, timeout: float = 30.0, max_concurrent: int = 50):
        self.timeout = timeout
        self.connector = None
        self.session = None

        # Ограничение одновременных запросов к источникам
        self.fetch_semaphore = asyncio.Semaphore(max_concurrent)

    async def initialize(self):
        """Инициализация connection pool"""
        if self.connector is None:
            self.connector = TCPConnector(
                limit=100,
                limit_per_host=20,
                ttl_dns_cache=300,
                enable_cleanup_closed=True
            )

        if self.session is None:
            self.session = ClientSession(
                connector=self.connector,
                timeout=ClientTimeout(total=self.timeout)
            )

    async def cleanup(self):
        """Очистка ресурсов"""
        if self.session:
            await self.session.close()
            self.session = None
        if self.connector:
            await self.connector.close()
            self.connector = None

    async def fetch(self, url: str) -> FetchResult:
        """
        Загружает ресурс целиком

        Сетевые ошибки и таймауты не пробрасываются, а возвращаются как ok=False.

        Args:
            url: URL источника

        Returns:
            FetchResult
        """
        await self.initialize()

        async with self.fetch_semaphore:
            try:
                async with self.session.get(url) as response:
                    if not 200 <= response.status < 300:
                        logger.info(f"Upstream {url} -> HTTP {response.status}")
                        return FetchResult(ok=False, status=response.status)

                    body = await response.read()
                    return FetchResult(ok=True, status=response.status, body=body)

            except (ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"⚠️ Upstream fetch failed: {url}: {e!r}")
                return FetchResult(ok=False, status=0)


class AssetMirror:
    """
    Обработчик запросов к зеркалу ассетов

    Порядок: кэш -> резолвер -> загрузка -> определение типа -> кэш -> ответ.
    Возвращает None, если запрос не относится к зеркалу или источник не ответил,
    и тогда запрос обрабатывается следующим обработчиком.
    """

    def __init__(self, cache: AssetCache, resolver: UpstreamResolver, fetcher,
                 namespace: str = "/e/",
                 binary_extensions: Iterable[str] = DEFAULT_BINARY_EXTENSIONS):
        self.cache = cache
        self.resolver = resolver
        self.fetcher = fetcher
        self.namespace = namespace
        self.binary_extensions = tuple(binary_extensions)

        self.stats = {
            'requests': 0,
            'cache_hits': 0,
            'fetches': 0,
            'fetch_failures': 0,
            'not_mapped': 0,
            'errors': 0
        }

    def is_applicable(self, request: web.Request) -> bool:
        return (request.method in ('GET', 'HEAD')
                and request.rel_url.raw_path.startswith(self.namespace))

    async def handle(self, request: web.Request) -> Optional[web.Response]:
        """Обработка запроса /e/*; None означает передачу следующему обработчику"""
        if not self.is_applicable(request):
            return None

        self.stats['requests'] += 1
        path = request.rel_url.raw_path

        try:
            entry = self.cache.lookup(path)
            if entry is not None:
                self.stats['cache_hits'] += 1
                return self._respond(entry)

            target = self.resolver.resolve(path)
            if target is None:
                self.stats['not_mapped'] += 1
                logger.debug(f"No upstream mapping for {path}")
                return None

            self.stats['fetches'] += 1
            result = await self.fetcher.fetch(target)
            if not result.ok:
                self.stats['fetch_failures'] += 1
                return None

            content_type = infer_content_type(target, self.binary_extensions)
            entry = self.cache.store(path, result.body, content_type)
            logger.info(f"📦 Mirrored {path} <- {target} ({len(entry.payload)} bytes, {content_type})")

            return self._respond(entry)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats['errors'] += 1
            logger.error(f"❌ Asset error for {path}: {e}", exc_info=True)
            return web.Response(
                text="Asset fetch failed",
                status=500,
                content_type="text/plain"
            )

    def _respond(self, entry: CacheEntry) -> web.Response:
        return web.Response(
            body=entry.payload,
            status=200,
            headers={'Content-Type': entry.content_type}
        )

    def get_stats(self) -> dict:
        return dict(self.stats)
