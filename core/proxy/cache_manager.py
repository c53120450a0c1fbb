# core/proxy/cache_manager.py
"""Кэш зеркалируемых ассетов в памяти процесса"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

# 30 дней
DEFAULT_TTL_SECONDS = 30 * 24 * 60 * 60


@dataclass(frozen=True)
class CacheEntry:
    """Запись кэша. Не изменяется после создания"""
    path: str
    payload: bytes
    content_type: str
    created_at: float


class AssetCache:
    """Менеджер кэша с TTL и ленивым вытеснением устаревших записей"""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        """
        Инициализация кэша

        Args:
            ttl_seconds: Максимальный возраст записи в секундах
            clock: Источник текущего времени (секунды)
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

        self.hits = 0
        self.misses = 0
        self.expired = 0
        self.stores = 0
        logger.debug(f"AssetCache инициализирован: ttl={ttl_seconds}s")

    def lookup(self, key: str) -> Optional[CacheEntry]:
        """
        Получить запись из кэша

        Устаревшая запись удаляется и считается отсутствующей.

        Args:
            key: Путь запроса

        Returns:
            CacheEntry или None
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                logger.debug(f"Cache MISS: {key}")
                return None

            if self._clock() - entry.created_at < self.ttl_seconds:
                self.hits += 1
                logger.debug(f"Cache HIT: {key}")
                return entry

            del self._entries[key]
            self.expired += 1
            self.misses += 1

        logger.debug(f"Cache EXPIRED: {key}")
        return None

    def store(self, key: str, payload: bytes, content_type: str) -> CacheEntry:
        """
        Добавить или заменить запись в кэше

        Args:
            key: Путь запроса
            payload: Содержимое ассета
            content_type: MIME type

        Returns:
            CacheEntry: Сохраненная запись
        """
        entry = CacheEntry(
            path=key,
            payload=bytes(payload),
            content_type=content_type,
            created_at=self._clock(),
        )
        with self._lock:
            self._entries[key] = entry
            self.stores += 1

        logger.debug(f"Cache STORE: {key} ({len(entry.payload)} bytes, {content_type})")
        return entry

    def get_stats(self) -> dict:
        """
        Получить статистику кэша

        Returns:
            dict: Словарь со статистикой
        """
        with self._lock:
            size = len(self._entries)
            payload_bytes = sum(len(e.payload) for e in self._entries.values())

        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0

        return {
            'size': size,
            'payload_bytes': payload_bytes,
            'ttl_seconds': self.ttl_seconds,
            'hits': self.hits,
            'misses': self.misses,
            'expired': self.expired,
            'stores': self.stores,
            'hit_rate': f"{hit_rate:.1f}%",
            'total_requests': total
        }

    def __len__(self) -> int:
        """Количество записей, включая еще не вытесненные устаревшие"""
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries
