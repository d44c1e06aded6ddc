from __future__ import annotations

from typing import Any, List, Tuple

from config.settings import Settings
from core.rpc_pool import SolanaRPCPool
from core.solana_rpc_async import SolanaRPCAsync


def _urls(settings: Settings) -> List[str]:
    # Priority: RPC_URLS (comma-separated) > RPC_URL/RPC_HTTP
    urls = [u for u in settings.rpc_urls if u]
    if urls:
        return urls
    return [settings.rpc_http]


def build_rpc(settings: Settings) -> Tuple[Any, str]:
    """
    Returns: (rpc_client, kind)
      kind in {'pool','single'}
    """
    urls = _urls(settings)
    kwargs = dict(
        timeout_s=settings.rpc_timeout_s,
        rps=settings.rpc_rps,
        max_concurrency=settings.rpc_concurrency,
        max_retries=settings.rpc_retries,
        backoff_base_s=settings.rpc_backoff_base_s,
        backoff_cap_s=settings.rpc_backoff_cap_s,
    )
    if len(urls) >= 2:
        return SolanaRPCPool(urls, **kwargs), "pool"
    return SolanaRPCAsync(urls[0], **kwargs), "single"
