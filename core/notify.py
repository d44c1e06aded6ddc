from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from core.models import FundingResult, ListingResult, PoolEvent

log = logging.getLogger("Notify")

COLOR_INFO = "#3498db"
COLOR_OK = "#2ecc71"
COLOR_WARN = "#f1c40f"
COLOR_ERROR = "#e74c3c"


def _field(name: str, value: Any, inline: bool = False) -> Dict[str, Any]:
    return {"name": name, "value": str(value), "inline": inline}


class DiscordNotifier:
    """
    Fire-and-forget Discord webhook poster.
    Never raises: a failed post is only logged.
    """

    def __init__(
        self,
        webhook_url: str = "",
        *,
        timeout_s: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.webhook_url = (webhook_url or "").strip()
        self.timeout_s = float(timeout_s)
        self._external_session = session
        self._session: Optional[aiohttp.ClientSession] = session

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._external_session is None:
            await self._session.close()
        self._session = None

    async def send(
        self,
        title: str,
        message: str,
        color: str = "#00ff00",
        fields: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        if not self.webhook_url:
            log.warning("[NOTIFY] DISCORD_WEBHOOK_URL not set, skipping: %s", title)
            return

        payload = {
            "embeds": [
                {
                    "title": title,
                    "description": message,
                    "color": int(color.lstrip("#"), 16),
                    "fields": fields or [],
                    "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
                }
            ]
        }
        try:
            s = await self._ensure_session()
            async with s.post(self.webhook_url, json=payload) as r:
                if r.status >= 400:
                    txt = await r.text()
                    log.error("[NOTIFY] webhook HTTP %s: %s", r.status, txt[:200])
                    return
            log.info("[NOTIFY] sent: %s", title)
        except Exception as e:
            log.error("[NOTIFY] send failed: %s", e)

    async def notify_new_pool(self, event: PoolEvent) -> None:
        created = dt.datetime.fromtimestamp(event.created_at, dt.timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        await self.send(
            "🔍 New pool detected",
            "A new Meteora liquidity pool was created.",
            COLOR_INFO,
            [
                _field("Pool", event.pool_address),
                _field("Pair", f"{event.token_a} / {event.token_b}", inline=True),
                _field("Created", created, inline=True),
            ],
        )

    async def notify_liquidity_added(self, result: FundingResult) -> None:
        title = "✅ Liquidity supplied" + (" (paper)" if result.paper else "")
        await self.send(
            title,
            "Liquidity was added ahead of the UI listing.",
            COLOR_OK,
            [
                _field("Pool", result.pool_address),
                _field("Amounts", f"{result.amount_a} / {result.amount_b}", inline=True),
                _field("Transaction", f"[Solscan](https://solscan.io/tx/{result.tx_receipt})", inline=True),
            ],
        )

    async def notify_listing_result(self, event: PoolEvent, result: ListingResult) -> None:
        if result.listed:
            await self.send(
                "🎉 Pool listed",
                f"Pool is visible on {', '.join(sorted(result.platforms))}.",
                COLOR_OK,
                [
                    _field("Pool", event.pool_address),
                    _field("Time to list", f"{result.seconds_to_list}s", inline=True),
                ],
            )
        else:
            await self.send(
                "⌛ Pool not listed",
                f"No UI listing after {result.attempts} checks.",
                COLOR_WARN,
                [_field("Pool", event.pool_address)],
            )

    async def notify_error(self, message: str, details: str = "") -> None:
        await self.send("❌ Error", message, COLOR_ERROR, [_field("Details", details or "No details")])
