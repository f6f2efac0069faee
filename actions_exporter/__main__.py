"""

What does this program do?

- Polls the GitHub API for workflow runs, jobs, runners and the remaining API quota
- Republishes that state as Prometheus gauges on EXPORT_PORT
- Each collector is its own loop on its own interval; repository discovery runs 5x slower
- Waits out rate-limit resets instead of failing, and never re-derives gauges for
  terminal runs/jobs it already wrote (in-memory dedup cache, 1h TTL)
- Stops cleanly on SIGINT/SIGTERM

Usage:
  GITHUB_TOKEN=... GITHUB_ORGAS=my-org python -m actions_exporter

"""

from __future__ import annotations

import logging
import signal
import sys
import threading

from prometheus_client import REGISTRY, start_http_server

from actions_exporter.context import ExporterContext, RepositoryList, start_collector
from actions_exporter.dedup import DedupCache
from actions_exporter.github import GitHubClient, GitHubError
from actions_exporter.metrics import Metrics
from actions_exporter.ratelimit import collect_rate_limit
from actions_exporter.repositories import discover_repositories
from actions_exporter.runners import FleetRunnerCollector, OrganizationRunnerCollector, RepositoryRunnerCollector
from actions_exporter.settings import ConfigurationError, Settings, setup_logging
from actions_exporter.workflows import WorkflowRunCollector

logger = logging.getLogger("actions_exporter")

def build_context(settings: Settings) -> ExporterContext:
  client = GitHubClient(
    token=settings.github_token,
    base_url=settings.api_base_url,
    timeout=settings.request_timeout_seconds,
    cache_max_entries=settings.http_cache_max_entries,
  )
  return ExporterContext(
    settings=settings,
    client=client,
    metrics=Metrics(settings.workflow_fields, namespace=settings.metrics_namespace, registry=REGISTRY),
    cache=DedupCache(max_entries=settings.dedup_cache_max_entries),
    repositories=RepositoryList(),
  )

def start_collectors(ctx: ExporterContext) -> list[threading.Thread]:
  settings = ctx.settings
  refresh = settings.refresh_seconds

  # Prime the repository list so the first workflow cycle has something to poll
  discover_repositories(ctx)

  threads = [
    start_collector("repository-discovery", lambda: discover_repositories(ctx), settings.discovery_interval_seconds, ctx.stop, run_immediately=False),
    start_collector("rate-limit", lambda: collect_rate_limit(ctx), refresh, ctx.stop),
    start_collector("workflow-runs", WorkflowRunCollector(ctx).collect, refresh, ctx.stop),
  ]
  if settings.organizations:
    threads.append(start_collector("organization-runners", OrganizationRunnerCollector(ctx).collect, refresh, ctx.stop))
  if settings.enterprises:
    threads.append(start_collector("fleet-runners", FleetRunnerCollector(ctx).collect, refresh, ctx.stop))
  if settings.fetch_repository_runners:
    threads.append(start_collector("repository-runners", RepositoryRunnerCollector(ctx).collect, refresh, ctx.stop))
  return threads

def main() -> None:
  try:
    settings = Settings.from_env()
  except ConfigurationError as e:
    setup_logging()
    logger.error("Invalid configuration: %s", e)
    sys.exit(1)

  setup_logging(settings.log_level)

  if not settings.github_token:
    logger.error("GITHUB_TOKEN not set. Export and retry.")
    logger.error("Set it e.g. `export GITHUB_TOKEN=your_token` and try again.")
    sys.exit(1)

  if not settings.organizations and not settings.repositories:
    logger.warning("Neither GITHUB_ORGAS nor GITHUB_REPOS is set; no workflow runs will be exported")

  try:
    ctx = build_context(settings)
    ctx.client.validate_token()
  except (GitHubError, ValueError) as e:
    logger.error("Client creation failed: %s", e)
    sys.exit(1)

  def _request_stop(signum, _frame):
    logger.info("Received signal %s, shutting down...", signum)
    ctx.stop.set()

  signal.signal(signal.SIGINT, _request_stop)
  signal.signal(signal.SIGTERM, _request_stop)

  start_http_server(settings.export_port, registry=ctx.metrics.registry)
  logger.info("Serving metrics on :%s (api=%s)", settings.export_port, settings.api_base_url)

  threads = start_collectors(ctx)

  while not ctx.stop.wait(1):
    pass
  for thread in threads:
    thread.join(timeout=settings.request_timeout_seconds + 1)
  logger.info("Exporter stopped")

if __name__ == "__main__":
  main()
