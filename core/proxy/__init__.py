# core/proxy/__init__.py
"""
Asset mirror package.

Cache, upstream resolver and the /e/* mirror handler.
"""

from core.proxy.cache_manager import AssetCache, CacheEntry, DEFAULT_TTL_SECONDS
from core.proxy.upstream_resolver import UpstreamResolver, DEFAULT_UPSTREAMS
from core.proxy.asset_mirror import AssetMirror, AssetFetcher, FetchResult, infer_content_type

__all__ = [
    'AssetCache',
    'CacheEntry',
    'DEFAULT_TTL_SECONDS',
    'UpstreamResolver',
    'DEFAULT_UPSTREAMS',
    'AssetMirror',
    'AssetFetcher',
    'FetchResult',
    'infer_content_type',
]
