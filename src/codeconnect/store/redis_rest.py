"""Code store backed by a Redis REST endpoint.

Speaks the Upstash-style HTTP command API: each command is POSTed as a JSON
array and answered with {"result": ...} or {"error": ...}. Conditional
updates run as a Lua script, which Redis executes atomically, so two server
instances sharing the same database can never both claim one code.
"""

import json
import logging
from typing import Any

import httpx

from codeconnect.errors import StoreUnavailableError
from codeconnect.store.base import CodeStore

logger = logging.getLogger(__name__)

# KEYS[1] = record key, ARGV[1] = expected fields (JSON), ARGV[2] = changes (JSON)
LUA_CAS_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
    return 0
end
local current = cjson.decode(raw)
local expected = cjson.decode(ARGV[1])
for field, value in pairs(expected) do
    if current[field] ~= value then
        return 0
    end
end
local changes = cjson.decode(ARGV[2])
for field, value in pairs(changes) do
    current[field] = value
end
redis.call('SET', KEYS[1], cjson.encode(current), 'KEEPTTL')
return 1
"""

SCAN_COUNT = 100


class RedisRestCodeStore(CodeStore):
    """CodeStore over the Redis REST command API.

    Attributes:
        url: REST endpoint base URL.
        key_prefix: Namespace prepended to every code.
    """

    def __init__(
        self,
        url: str,
        token: str,
        key_prefix: str = "pair:",
        timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize store.

        Args:
            url: REST endpoint base URL.
            token: Bearer token for the endpoint.
            key_prefix: Namespace prepended to every code.
            timeout: Per-request timeout in seconds.
            http_client: Optional httpx client (for DI).
        """
        self.url = url.rstrip("/")
        self.key_prefix = key_prefix
        self._token = token
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def _command(self, *args: Any) -> Any:
        """Run one Redis command and return its result.

        Raises:
            StoreUnavailableError: On transport failure or a Redis error reply.
        """
        try:
            response = await self.http_client.post(
                self.url,
                json=[str(a) for a in args],
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as e:
            raise StoreUnavailableError(f"Redis request failed: {e}") from e

        if response.status_code >= 500 or response.status_code in (401, 403):
            raise StoreUnavailableError(f"Redis returned {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise StoreUnavailableError(f"Invalid Redis response: {e}") from e

        if "error" in body:
            raise StoreUnavailableError(f"Redis error: {body['error']}")
        return body.get("result")

    async def set_if_absent(self, key: str, value: dict[str, Any], ttl: int) -> bool:
        result = await self._command(
            "SET", self._key(key), json.dumps(value), "NX", "EX", int(ttl)
        )
        return result == "OK"

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = await self._command("GET", self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding unreadable record for {key}")
            return None

    async def compare_and_swap(
        self,
        key: str,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool:
        result = await self._command(
            "EVAL",
            LUA_CAS_SCRIPT,
            1,
            self._key(key),
            json.dumps(expected),
            json.dumps(changes),
        )
        return result == 1

    async def delete(self, key: str) -> bool:
        result = await self._command("DEL", self._key(key))
        return bool(result)

    async def keys(self) -> list[str]:
        found: list[str] = []
        cursor = "0"
        while True:
            result = await self._command(
                "SCAN", cursor, "MATCH", f"{self.key_prefix}*", "COUNT", SCAN_COUNT
            )
            cursor, batch = str(result[0]), result[1]
            found.extend(k[len(self.key_prefix):] for k in batch)
            if cursor == "0":
                break
        return found

    async def ping(self) -> bool:
        try:
            return await self._command("PING") == "PONG"
        except StoreUnavailableError as e:
            logger.warning(f"Store ping failed: {e}")
            return False

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
