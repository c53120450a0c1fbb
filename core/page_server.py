# core/page_server.py
"""Статические файлы, именованные страницы и страницы ошибок"""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

from aiohttp import web

logger = logging.getLogger(__name__)

DEFAULT_PAGE_ROUTES = {
    '/': 'index.html',
    '/yz': 'apps.html',
    '/up': 'games.html',
    '/vk': 'settings.html',
    '/rx': 'tabs.html',
}


class PageServer:
    def __init__(self, static_dir: Union[str, Path], routes: Optional[Dict[str, str]] = None,
                 not_found_page: str = '404.html'):
        """
        Args:
            static_dir: Папка со статикой
            routes: Именованные маршруты {path: file}
            not_found_page: Страница для 404 и 500
        """
        self.static_dir = Path(static_dir).resolve()
        self.routes = dict(DEFAULT_PAGE_ROUTES if routes is None else routes)
        self.not_found_page = not_found_page

        if not self.static_dir.is_dir():
            logger.warning(f"⚠️ Static directory not found: {self.static_dir}")

    def _file(self, relative: str) -> Optional[Path]:
        """Путь внутри static_dir или None (нет файла / выход за пределы папки)"""
        try:
            candidate = (self.static_dir / relative.lstrip('/')).resolve()
            if candidate != self.static_dir and self.static_dir not in candidate.parents:
                return None
            if candidate.is_dir():
                candidate = candidate / 'index.html'
            return candidate if candidate.is_file() else None
        except (OSError, ValueError) as e:
            # NUL в пути, слишком длинное имя файла
            logger.debug(f"Static lookup skipped: {relative[:64]!r}: {e}")
            return None

    async def serve_static(self, request: web.Request) -> Optional[web.StreamResponse]:
        if request.method not in ('GET', 'HEAD'):
            return None

        path = self._file(request.path)
        if path is None:
            return None
        return web.FileResponse(path)

    async def serve_page(self, request: web.Request) -> Optional[web.StreamResponse]:
        if request.method not in ('GET', 'HEAD'):
            return None

        file_name = self.routes.get(request.path)
        if file_name is None:
            return None

        path = self._file(file_name)
        if path is None:
            logger.error(f"❌ Page file missing for route {request.path}: {file_name}")
            return None
        return web.FileResponse(path)

    def error_page(self, status: int) -> web.StreamResponse:
        path = self._file(self.not_found_page)
        if path is None:
            text = "Not Found" if status == 404 else "Internal Server Error"
            return web.Response(text=text, status=status)
        return web.FileResponse(path, status=status)
