"""In-memory KeyValueClient fake."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from otron.core.errors import StoreError


@dataclass
class FakeKeyValueClient:
    """Dict-backed KeyValueClient with Redis-like semantics.

    Expirations are recorded in ``ttls`` but never enforced; tests call
    ``expire_now(key)`` to simulate a key timing out. Method names added
    to ``failing`` raise StoreError, to exercise best-effort paths.
    """

    strings: dict[str, str] = field(default_factory=dict)
    sets: dict[str, set[str]] = field(default_factory=dict)
    lists: dict[str, list[str]] = field(default_factory=dict)
    hashes: dict[str, dict[str, str]] = field(default_factory=dict)
    ttls: dict[str, int] = field(default_factory=dict)
    failing: set[str] = field(default_factory=set)
    transactions: list[list[str]] = field(default_factory=list)

    def _check(self, method: str) -> None:
        if method in self.failing:
            raise StoreError(f"{method} unavailable")

    def expire_now(self, key: str) -> None:
        for store in (self.strings, self.sets, self.lists, self.hashes):
            store.pop(key, None)
        self.ttls.pop(key, None)

    async def get(self, key: str) -> str | None:
        self._check("get")
        return self.strings.get(key)

    async def set(
        self, key: str, value: str, *, ex: int | None = None, nx: bool = False
    ) -> bool:
        self._check("set")
        if nx and key in self.strings:
            return False
        self.strings[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        removed = 0
        for key in keys:
            found = False
            for store in (self.strings, self.sets, self.lists, self.hashes):
                if store.pop(key, None) is not None:
                    found = True
            self.ttls.pop(key, None)
            removed += int(found)
        return removed

    async def delete_if_equals(self, key: str, value: str) -> bool:
        self._check("delete_if_equals")
        if self.strings.get(key) != value:
            return False
        del self.strings[key]
        self.ttls.pop(key, None)
        return True

    async def expire(self, key: str, seconds: int) -> bool:
        self._check("expire")
        self.ttls[key] = seconds
        return True

    async def sadd(self, key: str, *members: str) -> int:
        self._check("sadd")
        target = self.sets.setdefault(key, set())
        added = len(set(members) - target)
        target.update(members)
        return added

    async def srem(self, key: str, *members: str) -> int:
        self._check("srem")
        target = self.sets.get(key, set())
        removed = len(target & set(members))
        target.difference_update(members)
        return removed

    async def smembers(self, key: str) -> set[str]:
        self._check("smembers")
        return set(self.sets.get(key, set()))

    async def lpush(self, key: str, *values: str) -> int:
        self._check("lpush")
        target = self.lists.setdefault(key, [])
        for value in values:
            target.insert(0, value)
        return len(target)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        self._check("lrange")
        items = self.lists.get(key, [])
        end = None if stop == -1 else stop + 1
        return list(items[start:end])

    async def ltrim(self, key: str, start: int, stop: int) -> bool:
        self._check("ltrim")
        if key in self.lists:
            end = None if stop == -1 else stop + 1
            self.lists[key] = self.lists[key][start:end]
        return True

    async def llen(self, key: str) -> int:
        self._check("llen")
        return len(self.lists.get(key, []))

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        self._check("hincrby")
        target = self.hashes.setdefault(key, {})
        value = int(target.get(field, 0)) + amount
        target[field] = str(value)
        return value

    async def hgetall(self, key: str) -> dict[str, str]:
        self._check("hgetall")
        return dict(self.hashes.get(key, {}))

    async def multi(self, commands: Sequence[tuple[str, tuple[Any, ...]]]) -> list[Any]:
        self._check("multi")
        self.transactions.append([name for name, _ in commands])
        return [await getattr(self, name)(*args) for name, args in commands]
