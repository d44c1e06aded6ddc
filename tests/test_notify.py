import asyncio

from core.models import FundingResult, ListingResult, PoolEvent
from core.notify import DiscordNotifier

EVENT = PoolEvent(pool_address="PoolAAA", token_a="MintA", token_b="MintB", created_at=1_700_000_000.0)


class FakeResponse:
    def __init__(self, status, body=""):
        self.status = status
        self.body = body

    async def text(self):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, status=204, error=None):
        self.status = status
        self.error = error
        self.posts = []

    def post(self, url, json=None):
        if self.error is not None:
            raise self.error
        self.posts.append((url, json))
        return FakeResponse(self.status, "bad request")


def test_without_webhook_nothing_is_sent():
    session = FakeSession()
    n = DiscordNotifier("", session=session)
    asyncio.run(n.notify_new_pool(EVENT))
    assert session.posts == []


def test_posts_embed():
    session = FakeSession()
    n = DiscordNotifier("https://discord.test/hook", session=session)
    res = FundingResult(tx_receipt="sigX", amount_a=1.5, amount_b=2.0, pool_address="PoolAAA", paper=True)
    asyncio.run(n.notify_liquidity_added(res))

    url, payload = session.posts[0]
    assert url == "https://discord.test/hook"
    embed = payload["embeds"][0]
    assert embed["title"].endswith("(paper)")
    assert embed["color"] == 0x2ECC71
    assert any("solscan.io/tx/sigX" in f["value"] for f in embed["fields"])


def test_listing_messages():
    session = FakeSession()
    n = DiscordNotifier("https://discord.test/hook", session=session)
    asyncio.run(n.notify_listing_result(EVENT, ListingResult(listed=True, platforms=frozenset({"Meteora", "Jupiter"}), seconds_to_list=30)))
    asyncio.run(n.notify_listing_result(EVENT, ListingResult(listed=False, attempts=30)))
    listed, missed = (p["embeds"][0] for _, p in session.posts)
    assert listed["description"] == "Pool is visible on Jupiter, Meteora."
    assert "30 checks" in missed["description"]


def test_http_and_transport_failures_are_swallowed():
    n = DiscordNotifier("https://discord.test/hook", session=FakeSession(status=400))
    asyncio.run(n.notify_error("Liquidity supply failed", "pool: PoolAAA"))

    n = DiscordNotifier("https://discord.test/hook", session=FakeSession(error=OSError("network down")))
    asyncio.run(n.notify_error("Liquidity supply failed"))
