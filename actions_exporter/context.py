"""Shared handles passed to every collector, and the polling loop they run in."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

import logging
import threading
import time

from actions_exporter.dedup import DedupCache
from actions_exporter.github import GitHubClient
from actions_exporter.metrics import Metrics
from actions_exporter.pagination import FetchResult, ListPage, fetch_all, fetch_one
from actions_exporter.settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

class RepositoryList:
  """ Active `owner/repo` names. One writer replaces the whole list; readers get a snapshot """

  def __init__(self, repositories: Optional[list[str]] = None):
    self._repositories: tuple[str, ...] = tuple(repositories or ())

  def get(self) -> tuple[str, ...]:
    return self._repositories

  def replace(self, repositories: list[str]) -> None:
    self._repositories = tuple(repositories)

  def __len__(self) -> int:
    return len(self._repositories)

@dataclass
class ExporterContext:
  settings: Settings
  client: GitHubClient
  metrics: Metrics
  cache: DedupCache
  repositories: RepositoryList = field(default_factory=RepositoryList)
  stop: threading.Event = field(default_factory=threading.Event)
  clock: Callable[[], float] = time.time

  def fetch_all(self, list_page: ListPage, description: str) -> FetchResult:
    return fetch_all(list_page, per_page=self.settings.per_page, description=description, clock=self.clock, stop=self.stop)

  def fetch_one(self, get: Callable[[], T], description: str) -> Optional[T]:
    return fetch_one(get, description=description, clock=self.clock, stop=self.stop)

# ----------------------------------------------------------------------------
# POLLING LOOP
# ----------------------------------------------------------------------------

def poll_forever(name: str, cycle: Callable[[], object], interval: float, stop: threading.Event, run_immediately: bool = True) -> None:
  """ Runs `cycle` every `interval` seconds until `stop` is set. A failing cycle is logged, never fatal """
  logger.info("Collector %s started (interval=%ss)", name, interval)

  if not run_immediately and stop.wait(interval):
    return

  while not stop.is_set():
    started = time.monotonic()
    try:
      cycle()
    except Exception as e:  # noqa: BLE001
      # Don't kill the collector; the next cycle retries
      logger.exception("Collector %s cycle failed: %s", name, e)
    logger.debug("Collector %s cycle took %.2fs", name, time.monotonic() - started)

    if stop.wait(interval):
      break

  logger.info("Collector %s stopped", name)

def start_collector(name: str, cycle: Callable[[], object], interval: float, stop: threading.Event, run_immediately: bool = True) -> threading.Thread:
  thread = threading.Thread(
    target=poll_forever,
    args=(name, cycle, interval, stop, run_immediately),
    name=name,
    daemon=True,
  )
  thread.start()
  return thread
