"""
Redis client with connection pooling and helper functions.

Provides:
- Connection pool management
- RedisJSON document helpers
- Stream / consumer group helpers
- Raw command access for RediSearch
"""

import json
from typing import Any, Dict, List, Optional, Tuple
import redis
from redis.exceptions import ResponseError
from loguru import logger

from app.utils.config import get_settings


StreamEntries = List[Tuple[str, List[Tuple[str, Dict[str, str]]]]]

# KEYS[1] = document; ARGV = field, delta, field, delta, ...
# Runs atomically; missing counters start at 0 and results are clamped at 0.
INCREMENT_CLAMPED_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
for i = 1, #ARGV - 1, 2 do
    local path = '$.' .. ARGV[i]
    if #redis.call('JSON.TYPE', KEYS[1], path) == 0 then
        redis.call('JSON.SET', KEYS[1], path, '0')
    end
    local value = cjson.decode(redis.call('JSON.NUMINCRBY', KEYS[1], path, ARGV[i + 1]))[1]
    if value < 0 then
        redis.call('JSON.SET', KEYS[1], path, '0')
    end
end
return 1
"""


class RedisClient:
    """Redis Stack client (RedisJSON, Streams, RediSearch)."""

    def __init__(self, url: str = None, client: Optional[redis.Redis] = None):
        """Initialize Redis client."""
        settings = get_settings()
        self.url = url or settings.redis_url

        self._client = client
        self._increment_script = None

    def connect(self):
        """Establish connection to Redis."""
        if self._client is None:
            logger.info(f"Connecting to Redis at {self.url}...")
            self._client = redis.Redis.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=10,
                health_check_interval=30,
                retry_on_timeout=True,
            )
            self._client.ping()
            logger.success("Connected to Redis successfully")

    def close(self):
        """Close Redis connection."""
        if self._client:
            logger.info("Closing Redis connection...")
            self._client.close()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        """Get underlying client, connecting if necessary."""
        if self._client is None:
            self.connect()
        return self._client

    # -- JSON documents -------------------------------------------------------

    def json_set(self, key: str, value: Dict[str, Any], path: str = "$") -> None:
        """Store a JSON document (or a path inside one)."""
        self.client.json().set(key, path, value)

    def json_get(self, key: str) -> Optional[Dict[str, Any]]:
        """Load a JSON document, or None if the key does not exist."""
        return self.client.json().get(key)

    def json_update(self, key: str, fields: Dict[str, Any]) -> bool:
        """
        Set top-level fields on an existing JSON document.

        Returns:
            False if the document does not exist
        """
        if not self.client.exists(key):
            return False
        pipe = self.client.pipeline(transaction=True)
        for name, value in fields.items():
            pipe.execute_command("JSON.SET", key, f"$.{name}", json.dumps(value))
        pipe.execute()
        return True

    def json_increment_clamped(self, key: str, deltas: Dict[str, int]) -> bool:
        """
        Atomically add deltas to numeric top-level fields, clamping at zero.

        Returns:
            False if the document does not exist
        """
        if self._increment_script is None:
            self._increment_script = self.client.register_script(INCREMENT_CLAMPED_SCRIPT)
        args = [part for name, delta in deltas.items() for part in (name, delta)]
        return bool(self._increment_script(keys=[key], args=args))

    def json_set_many(self, documents: Dict[str, Dict[str, Any]]) -> None:
        """Store several JSON documents in one round trip."""
        if not documents:
            return
        pipe = self.client.pipeline(transaction=False)
        for key, value in documents.items():
            pipe.execute_command("JSON.SET", key, "$", json.dumps(value))
        pipe.execute()

    def exists(self, key: str) -> bool:
        """Check whether a key exists."""
        return self.client.exists(key) == 1

    def delete(self, *keys: str) -> int:
        """Delete keys, returning how many were removed."""
        if not keys:
            return 0
        return self.client.delete(*keys)

    def scan_keys(self, pattern: str) -> List[str]:
        """List keys matching pattern without blocking the server."""
        return sorted(self.client.scan_iter(match=pattern, count=500))

    # -- Streams --------------------------------------------------------------

    def stream_add(self, stream: str, fields: Dict[str, str]) -> str:
        """Append an entry to a stream, returning its id."""
        return self.client.xadd(stream, fields)

    def ensure_consumer_group(self, stream: str, group: str) -> bool:
        """
        Create a consumer group (and the stream) if absent.

        Returns:
            True if created, False if it already existed
        """
        try:
            self.client.xgroup_create(stream, group, id="0", mkstream=True)
            return True
        except ResponseError as e:
            if "BUSYGROUP" in str(e):
                return False
            raise

    def read_group(
        self,
        stream: str,
        group: str,
        consumer: str,
        count: int = 1,
        block_ms: Optional[int] = 5000,
        start_id: str = ">"
    ) -> StreamEntries:
        """
        Read entries for a consumer in a group.

        ``">"`` blocks for new entries; ``"0"`` returns entries already
        delivered to this consumer but not yet acknowledged.
        """
        return self.client.xreadgroup(
            group, consumer, {stream: start_id}, count=count, block=block_ms
        ) or []

    def ack(self, stream: str, group: str, *entry_ids: str) -> int:
        """Acknowledge entries for a group."""
        return self.client.xack(stream, group, *entry_ids)

    # -- Raw commands ---------------------------------------------------------

    def execute(self, *args: Any) -> Any:
        """Execute a raw command (used for FT.* RediSearch commands)."""
        return self.client.execute_command(*args)


# Global client instance
_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Get global Redis client instance."""
    global _client
    if _client is None:
        _client = RedisClient()
        _client.connect()
    return _client


def close_redis_client():
    """Close global Redis client."""
    global _client
    if _client:
        _client.close()
        _client = None
