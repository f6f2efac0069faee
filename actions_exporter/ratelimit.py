from __future__ import annotations

from typing import Optional

import logging

from actions_exporter.context import ExporterContext
from actions_exporter.github import GitHubError

logger = logging.getLogger(__name__)

def collect_rate_limit(ctx: ExporterContext) -> Optional[int]:
  """ Publishes the remaining core quota. The /rate_limit call itself is not counted by GitHub """
  try:
    data = ctx.client.get_rate_limit()
  except GitHubError as e:
    logger.error("getRateLimitFromGithub error: %s", e)
    return None

  core = (data.get("resources") or {}).get("core") or data.get("rate") or {}
  remaining = core.get("remaining")
  if remaining is None:
    logger.warning("Rate limit response without core.remaining: %s", data)
    return None

  ctx.metrics.rate_limit_remaining.set(int(remaining))
  return int(remaining)
