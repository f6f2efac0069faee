"""Page walking with rate-limit aware suspension.

`fetch_all` keeps calling a list operation until the API reports no further
pages. Quota exhaustion suspends until the reported reset and retries the
same page; any other failure ends the walk with whatever was collected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, TypeVar

import logging
import time

from actions_exporter.github import GitHubError, Page, RateLimitError

logger = logging.getLogger(__name__)

RATE_LIMIT_RESET_MARGIN_SECONDS = 1.0

T = TypeVar("T")

ListPage = Callable[[int, int], Page]

class StopSignal(Protocol):
  def is_set(self) -> bool: ...
  def wait(self, timeout: Optional[float] = None) -> bool: ...

@dataclass
class FetchResult:
  items: list[dict[str, Any]] = field(default_factory=list)
  complete: bool = True
  pages: int = 0

  def __len__(self) -> int:
    return len(self.items)

  def __iter__(self):
    return iter(self.items)

def wait_for_reset(err: RateLimitError, description: str, clock: Callable[[], float] = time.time, stop: Optional[StopSignal] = None) -> bool:
  """ Suspends until the quota resets. Returns False if a stop was requested meanwhile """
  sleep_for = max(0.0, err.reset_at - clock()) + RATE_LIMIT_RESET_MARGIN_SECONDS
  logger.warning("%s rate limited. Pausing %.0fs until %s", description, sleep_for, err.reset_time.isoformat())
  if stop is None:
    time.sleep(sleep_for)
    return True
  return not stop.wait(sleep_for)

def fetch_all(
  list_page: ListPage,
  per_page: int = 100,
  description: str = "list",
  clock: Callable[[], float] = time.time,
  stop: Optional[StopSignal] = None,
) -> FetchResult:
  result = FetchResult()
  page = 1

  while True:
    try:
      response = list_page(page, per_page)
    except RateLimitError as e:
      if not wait_for_reset(e, description, clock, stop):
        logger.info("%s: stop requested while waiting for rate limit reset", description)
        result.complete = False
        return result
      continue
    except GitHubError as e:
      logger.error("%s error: %s", description, e)
      result.complete = False
      return result
    except Exception as e:  # noqa: BLE001
      logger.exception("%s unexpected error: %s", description, e)
      result.complete = False
      return result

    result.pages += 1
    result.items.extend(response.items)

    if not response.next_page:
      return result
    if response.next_page <= page:
      # A cursor that does not advance would never terminate
      logger.warning("%s: next page %s does not advance past %s, stopping", description, response.next_page, page)
      result.complete = False
      return result
    page = response.next_page

def fetch_one(
  get: Callable[[], T],
  description: str = "get",
  clock: Callable[[], float] = time.time,
  stop: Optional[StopSignal] = None,
) -> Optional[T]:
  """ Single-object variant of `fetch_all`: same rate-limit wait, None on any other failure """
  while True:
    try:
      return get()
    except RateLimitError as e:
      if not wait_for_reset(e, description, clock, stop):
        return None
    except GitHubError as e:
      logger.error("%s error: %s", description, e)
      return None
