# core/proxy/upstream_resolver.py
"""Сопоставление путей /e/* с удаленными источниками ассетов"""

import logging
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAMS = [
    ("/e/1/", "https://raw.githubusercontent.com/qrs/x/fixy/"),
    ("/e/2/", "https://raw.githubusercontent.com/3v1/V5-Assets/main/"),
    ("/e/3/", "https://raw.githubusercontent.com/3v1/V5-Retro/master/"),
]


class UpstreamResolver:
    """Переписывает путь запроса в URL источника по первому совпавшему префиксу"""

    def __init__(self, mappings: Iterable[Tuple[str, str]] = DEFAULT_UPSTREAMS):
        """
        Args:
            mappings: Упорядоченные пары (prefix, origin_base)
        """
        self._mappings: List[Tuple[str, str]] = []

        for prefix, origin_base in mappings:
            if not prefix:
                raise ValueError("Upstream prefix must not be empty")

            for earlier, _ in self._mappings:
                if prefix.startswith(earlier):
                    logger.warning(
                        f"⚠️ Upstream prefix {prefix!r} is shadowed by {earlier!r} and will never match"
                    )

            self._mappings.append((prefix, origin_base))

        logger.debug(f"UpstreamResolver: {len(self._mappings)} mappings")

    @property
    def mappings(self) -> List[Tuple[str, str]]:
        return list(self._mappings)

    def resolve(self, request_path: str) -> Optional[str]:
        """
        Возвращает URL источника или None, если ни один префикс не подходит

        Args:
            request_path: Путь запроса (например, /e/2/foo/bar.unityweb)

        Returns:
            str или None
        """
        for prefix, origin_base in self._mappings:
            if request_path.startswith(prefix):
                return origin_base + request_path[len(prefix):]
        return None
