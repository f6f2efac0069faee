"""Bounded in-memory key store with per-entry expiry.

Used to remember which (object, status, conclusion) observations have already
been written to gauges. When full, the least recently used entry is evicted;
an evicted key simply reads as absent.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Callable

import json
import threading
import time

SENTINEL = b"1"

def make_key(*parts: Any) -> str:
  """ Joins key parts without ambiguity: ("a,b", "c") and ("a", "b,c") never collide """
  return json.dumps([None if p is None else str(p) for p in parts], separators=(",", ":"))

class DedupCache:
  def __init__(self, max_entries: int = 100_000, clock: Callable[[], float] = time.monotonic):
    if max_entries <= 0:
      raise ValueError("max_entries must be positive")
    self.max_entries = max_entries
    self.clock = clock
    self._entries: OrderedDict[str, tuple[float, bytes]] = OrderedDict()
    self._lock = threading.Lock()

  def __len__(self) -> int:
    with self._lock:
      return len(self._entries)

  def put(self, key: str, ttl: float, value: bytes = SENTINEL) -> None:
    expires_at = self.clock() + ttl
    with self._lock:
      self._entries[key] = (expires_at, value)
      self._entries.move_to_end(key)
      while len(self._entries) > self.max_entries:
        self._entries.popitem(last=False)

  def get(self, key: str) -> bytes | None:
    now = self.clock()
    with self._lock:
      entry = self._entries.get(key)
      if entry is None:
        return None
      expires_at, value = entry
      if expires_at <= now:
        del self._entries[key]
        return None
      self._entries.move_to_end(key)
      return value

  def contains(self, key: str) -> bool:
    return self.get(key) is not None

  def __contains__(self, key: str) -> bool:
    return self.contains(key)

  def purge_expired(self) -> int:
    now = self.clock()
    with self._lock:
      expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
      for k in expired:
        del self._entries[k]
    return len(expired)
