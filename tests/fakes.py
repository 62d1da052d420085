"""In-memory stand-ins for Redis and the embedding service."""

import fnmatch
import json

from redis.exceptions import ResponseError


class FakeRedisClient:
    """
    Implements the subset of ``RedisClient`` the pipeline uses, in memory.

    Values round-trip through JSON the way RedisJSON stores them.
    """

    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.streams: dict[str, list[tuple[str, dict]]] = {}
        self.groups: dict[tuple[str, str], dict] = {}
        self.indexes: dict[str, list] = {}
        self.commands: list[tuple] = []

    # JSON documents
    def json_set(self, key, value, path="$"):
        value = json.loads(json.dumps(value))
        if path == "$":
            self.docs[key] = value
        else:
            self.docs.setdefault(key, {})[path.removeprefix("$.")] = value

    def json_get(self, key):
        if key not in self.docs:
            return None
        return json.loads(json.dumps(self.docs[key]))

    def json_update(self, key, fields):
        if key not in self.docs:
            return False
        self.docs[key].update(json.loads(json.dumps(fields)))
        return True

    def json_increment_clamped(self, key, deltas):
        if key not in self.docs:
            return False
        document = self.docs[key]
        for name, delta in deltas.items():
            document[name] = max(0, (document.get(name) or 0) + delta)
        return True

    def json_set_many(self, documents):
        for key, value in documents.items():
            self.json_set(key, value)

    def exists(self, key):
        return key in self.docs

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.docs.pop(key, None) is not None:
                removed += 1
        return removed

    def scan_keys(self, pattern):
        return sorted(key for key in self.docs if fnmatch.fnmatchcase(key, pattern))

    # Streams
    def stream_add(self, stream, fields):
        entries = self.streams.setdefault(stream, [])
        entry_id = f"{len(entries) + 1}-0"
        entries.append((entry_id, dict(fields)))
        return entry_id

    def ensure_consumer_group(self, stream, group):
        self.streams.setdefault(stream, [])
        if (stream, group) in self.groups:
            return False
        self.groups[(stream, group)] = {"delivered": 0, "pending": {}}
        return True

    def read_group(self, stream, group, consumer, count=1, block_ms=5000, start_id=">"):
        state = self.groups[(stream, group)]
        entries = self.streams.get(stream, [])
        if start_id != ">":
            owned = [
                (entry_id, fields) for entry_id, fields in entries
                if state["pending"].get(entry_id) == consumer
            ]
            return [[stream, owned[:count]]] if owned else []

        batch = entries[state["delivered"]:state["delivered"] + count]
        state["delivered"] += len(batch)
        for entry_id, _ in batch:
            state["pending"][entry_id] = consumer
        return [[stream, batch]] if batch else []

    def ack(self, stream, group, *entry_ids):
        pending = self.groups[(stream, group)]["pending"]
        return sum(1 for entry_id in entry_ids if pending.pop(entry_id, None) is not None)

    def pending(self, stream, group):
        return dict(self.groups[(stream, group)]["pending"])

    # RediSearch
    def execute(self, *args):
        self.commands.append(args)
        command, name = args[0], args[1]
        if command == "FT.INFO":
            if name not in self.indexes:
                raise ResponseError("Unknown index name")
            return ["index_name", name, "num_docs", "0"]
        if command == "FT.DROPINDEX":
            if self.indexes.pop(name, None) is None:
                raise ResponseError("Unknown Index name")
            return "OK"
        if command == "FT.CREATE":
            if name in self.indexes:
                raise ResponseError("Index already exists")
            self.indexes[name] = list(args[2:])
            return "OK"
        raise ResponseError(f"unknown command '{command}'")


class FakeEmbeddingClient:
    """Deterministic embeddings; texts containing a marker fail."""

    def __init__(self, dimension=4, fail_marker="FAIL"):
        self.dimension = dimension
        self.fail_marker = fail_marker
        self.requested: list[str] = []

    def embed_batch(self, texts, batch_size=None):
        self.requested.extend(texts)
        vectors = []
        for text in texts:
            if self.fail_marker and self.fail_marker in text:
                vectors.append(None)
            else:
                vectors.append([float(len(text) % 7 + 1)] + [0.5] * (self.dimension - 1))
        return vectors
