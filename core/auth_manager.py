# core/auth_manager.py
"""
HTTP Basic challenge для прикладного слоя
"""

import hmac
import logging
from typing import Dict, Optional

from aiohttp import web, BasicAuth

logger = logging.getLogger(__name__)


class AuthManager:
    """Проверка Basic-авторизации по списку пользователей из конфигурации"""

    def __init__(self, users: Dict[str, str], realm: str = "Interstellar"):
        """
        Args:
            users: Словарь {username: password}
            realm: Realm для заголовка WWW-Authenticate
        """
        if not users:
            raise ValueError("Auth challenge enabled but no users configured")

        self.users = dict(users)
        self.realm = realm
        self.stats = {
            'granted': 0,
            'denied': 0
        }

        logger.info("🔒 Password protection enabled")
        for username in self.users:
            logger.info(f"User: {username}")

    def _parse(self, header: Optional[str]) -> Optional[BasicAuth]:
        if not header:
            return None
        try:
            return BasicAuth.decode(header)
        except ValueError:
            return None

    def check(self, request: web.Request) -> bool:
        """Проверить заголовок Authorization"""
        credentials = self._parse(request.headers.get('Authorization'))
        if credentials is None:
            return False

        expected = self.users.get(credentials.login)
        if expected is None:
            return False

        return hmac.compare_digest(credentials.password.encode('utf-8'), expected.encode('utf-8'))

    def challenge(self) -> web.Response:
        return web.Response(
            status=401,
            headers={'WWW-Authenticate': f'Basic realm="{self.realm}"'}
        )

    def middleware(self):
        """Middleware прикладного слоя"""

        @web.middleware
        async def auth_middleware(request, handler):
            if self.check(request):
                self.stats['granted'] += 1
                return await handler(request)

            self.stats['denied'] += 1
            logger.debug(f"🔐 Auth challenge: {request.method} {request.rel_url}")
            return self.challenge()

        return auth_middleware

    def get_stats(self) -> dict:
        return dict(self.stats)
