"""Tests for the Redis REST code store."""

import json

import httpx
import pytest

from codeconnect.errors import StoreUnavailableError
from codeconnect.store.redis_rest import LUA_CAS_SCRIPT, RedisRestCodeStore


class FakeRedis:
    """Answers Redis REST commands from a dict.

    EVAL results come from eval_result; the script itself is not run.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.commands: list[list[str]] = []
        self.eval_result = 1

    def handler(self, request: httpx.Request) -> httpx.Response:
        command = json.loads(request.content)
        self.commands.append(command)
        name = command[0]

        if name == "SET":
            key, value = command[1], command[2]
            if "NX" in command and key in self.data:
                return httpx.Response(200, json={"result": None})
            self.data[key] = value
            return httpx.Response(200, json={"result": "OK"})
        if name == "GET":
            return httpx.Response(200, json={"result": self.data.get(command[1])})
        if name == "DEL":
            existed = self.data.pop(command[1], None) is not None
            return httpx.Response(200, json={"result": int(existed)})
        if name == "EVAL":
            return httpx.Response(200, json={"result": self.eval_result})
        if name == "SCAN":
            prefix = command[3].rstrip("*")
            keys = [k for k in self.data if k.startswith(prefix)]
            return httpx.Response(200, json={"result": ["0", keys]})
        if name == "PING":
            return httpx.Response(200, json={"result": "PONG"})
        return httpx.Response(200, json={"error": f"ERR unknown command '{name}'"})


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def store(redis):
    client = httpx.AsyncClient(transport=httpx.MockTransport(redis.handler))
    return RedisRestCodeStore(
        url="https://redis.example.com/",
        token="secret-token",
        http_client=client,
    )


def store_with(handler) -> RedisRestCodeStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RedisRestCodeStore(url="https://redis.example.com", token="t", http_client=client)


class TestCommands:
    """Tests for command encoding."""

    @pytest.mark.asyncio
    async def test_set_if_absent_sends_nx_ex(self, store, redis):
        assert await store.set_if_absent("AAAA", {"state": "pending"}, 660) is True

        assert redis.commands[0] == [
            "SET", "pair:AAAA", '{"state": "pending"}', "NX", "EX", "660"
        ]

    @pytest.mark.asyncio
    async def test_set_if_absent_existing(self, store):
        await store.set_if_absent("AAAA", {"n": 1}, 60)
        assert await store.set_if_absent("AAAA", {"n": 2}, 60) is False

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, store):
        await store.set_if_absent("AAAA", {"state": "pending"}, 60)
        assert await store.get("AAAA") == {"state": "pending"}
        assert await store.get("BBBB") is None

    @pytest.mark.asyncio
    async def test_get_discards_unreadable_value(self, store, redis):
        redis.data["pair:AAAA"] = "not json"
        assert await store.get("AAAA") is None

    @pytest.mark.asyncio
    async def test_compare_and_swap_uses_script(self, store, redis):
        swapped = await store.compare_and_swap(
            "AAAA", {"state": "pending"}, {"state": "claimed"}
        )

        assert swapped is True
        assert redis.commands[0] == [
            "EVAL",
            LUA_CAS_SCRIPT,
            "1",
            "pair:AAAA",
            '{"state": "pending"}',
            '{"state": "claimed"}',
        ]

    @pytest.mark.asyncio
    async def test_compare_and_swap_rejected(self, store, redis):
        redis.eval_result = 0
        assert await store.compare_and_swap("AAAA", {}, {}) is False

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.set_if_absent("AAAA", {}, 60)
        assert await store.delete("AAAA") is True
        assert await store.delete("AAAA") is False

    @pytest.mark.asyncio
    async def test_keys_strip_prefix(self, store, redis):
        redis.data["pair:AAAA"] = "{}"
        redis.data["pair:BBBB"] = "{}"
        redis.data["other:CCCC"] = "{}"

        assert sorted(await store.keys()) == ["AAAA", "BBBB"]

    @pytest.mark.asyncio
    async def test_keys_follows_cursor(self):
        pages = iter([["7", ["pair:AAAA"]], ["0", ["pair:BBBB"]]])

        def handler(request):
            return httpx.Response(200, json={"result": next(pages)})

        store = store_with(handler)
        assert await store.keys() == ["AAAA", "BBBB"]

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"result": "PONG"})

        store = RedisRestCodeStore(
            url="https://redis.example.com/",
            token="secret-token",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await store.ping()

        assert seen["auth"] == "Bearer secret-token"


class TestFailures:
    """Transport and server failures surface as StoreUnavailableError."""

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        with pytest.raises(StoreUnavailableError):
            await store_with(handler).get("AAAA")

    @pytest.mark.asyncio
    async def test_server_error(self):
        store = store_with(lambda request: httpx.Response(503, text="busy"))
        with pytest.raises(StoreUnavailableError):
            await store.get("AAAA")

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        store = store_with(lambda request: httpx.Response(401, json={"error": "bad token"}))
        with pytest.raises(StoreUnavailableError):
            await store.set_if_absent("AAAA", {}, 60)

    @pytest.mark.asyncio
    async def test_error_reply(self):
        store = store_with(lambda request: httpx.Response(400, json={"error": "ERR syntax"}))
        with pytest.raises(StoreUnavailableError):
            await store.delete("AAAA")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        store = store_with(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(StoreUnavailableError):
            await store.get("AAAA")

    @pytest.mark.asyncio
    async def test_ping_reports_false(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        assert await store_with(handler).ping() is False


class TestClose:
    @pytest.mark.asyncio
    async def test_does_not_close_injected_client(self, store):
        await store.close()
        assert not store.http_client.is_closed

    @pytest.mark.asyncio
    async def test_closes_own_client(self):
        store = RedisRestCodeStore(url="https://redis.example.com", token="t")
        await store.close()
        assert store.http_client.is_closed
