"""Workflow run / job reconciler.

Each cycle walks every active repository, lists the runs created within the
fetch window and the jobs of each run, and writes them into the run and job
gauges. Terminal observations are remembered in the dedup cache, so a run or
job whose (identity, status, conclusion) has already been written is not
re-derived on later cycles while it stays inside the window.

Series that were not observed in a complete fetch of their repository are
removed at the end of the cycle; a repository whose fetch was partial keeps
its previous series until the next complete pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import logging

from prometheus_client import Gauge

from actions_exporter.context import ExporterContext
from actions_exporter.dedup import make_key
from actions_exporter.metrics import (
  get_relevant_fields,
  job_conclusion_code,
  remove_series,
  run_conclusion_code,
  runner_label_string,
)
from actions_exporter.repositories import split_full_name

logger = logging.getLogger(__name__)

SeriesKey = tuple[str, tuple[str, ...]]

RUN_STATUS = "workflow_run_status"
RUN_DURATION = "workflow_run_duration_ms"
JOB_DURATION = "workflow_job_duration_total_ms"
JOB_STATUS = "workflow_job_status_count"

# ----------------------------------------------------------------------------
# HELPERS
# ----------------------------------------------------------------------------

def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
  if not value:
    return None
  try:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
  except (TypeError, ValueError):
    logger.warning("Unparseable timestamp %r", value)
    return None
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=timezone.utc)
  return parsed

def elapsed_seconds(start: Optional[str], end: Optional[str]) -> float:
  """ Whole seconds between two API timestamps, clamped at 0; 0 when either is missing """
  started = parse_timestamp(start)
  finished = parse_timestamp(end)
  if started is None or finished is None:
    return 0.0
  return max(0.0, float(int((finished - started).total_seconds())))

def job_duration_ms(job: dict[str, Any]) -> float:
  return elapsed_seconds(job.get("started_at"), job.get("completed_at")) * 1000

def run_duration_ms(run: dict[str, Any], usage: Optional[dict[str, Any]] = None) -> float:
  """ Billed duration when usage is available, else updated_at - created_at """
  if usage:
    billed = usage.get("run_duration_ms")
    if billed is not None:
      return float(billed)
  return elapsed_seconds(run.get("created_at"), run.get("updated_at")) * 1000

def run_key_parts(full_name: str, run: dict[str, Any]) -> tuple[Any, ...]:
  return (
    full_name,
    run.get("workflow_id"),
    run.get("head_sha"),
    run.get("run_number"),
    run.get("status"),
    run.get("conclusion"),
  )

def run_cache_key(full_name: str, run: dict[str, Any]) -> str:
  return make_key("run", *run_key_parts(full_name, run))

def job_cache_key(full_name: str, run: dict[str, Any], job: dict[str, Any]) -> str:
  return make_key(
    "job",
    *run_key_parts(full_name, run),
    job.get("id"),
    job.get("status"),
    job.get("conclusion"),
  )

def job_labels(owner: str, repo: str, run: dict[str, Any], job: dict[str, Any]) -> tuple[str, ...]:
  def text(value: Any) -> str:
    return "" if value is None else str(value)

  return (
    owner,
    repo,
    text(run.get("head_branch")),
    text(job.get("status")),
    text(job.get("conclusion")),
    text(job.get("runner_group_name")),
    runner_label_string(job.get("labels")),
    text(run.get("name")),
    text(job.get("name")),
    text(job.get("id")),
  )

@dataclass
class CycleStats:
  """ Counters and observed series for one reconciler cycle; never shared between cycles """

  repositories: int = 0
  runs: int = 0
  jobs: int = 0
  cache_hits: int = 0
  pruned: int = 0
  incomplete: set[str] = field(default_factory=set)
  series: dict[str, set[SeriesKey]] = field(default_factory=dict)

  def observe(self, full_name: str, gauge_name: str, labels: tuple[str, ...]) -> None:
    self.series.setdefault(full_name, set()).add((gauge_name, labels))

# ----------------------------------------------------------------------------
# RECONCILER
# ----------------------------------------------------------------------------

class WorkflowRunCollector:
  def __init__(self, ctx: ExporterContext):
    self.ctx = ctx
    metrics = ctx.metrics
    self._gauges: dict[str, Gauge] = {
      RUN_STATUS: metrics.workflow_run_status,
      RUN_DURATION: metrics.workflow_run_duration_ms,
      JOB_DURATION: metrics.workflow_job_duration_total_ms,
      JOB_STATUS: metrics.workflow_job_status_count,
    }
    # series written per repository by the last finished cycle
    self._series: dict[str, set[SeriesKey]] = {}

  # -- dedup cache access; failures count as a miss ---------------------------

  def _seen(self, key: str) -> bool:
    try:
      return self.ctx.cache.contains(key)
    except Exception as e:  # noqa: BLE001
      logger.warning("Dedup cache read failed for %s: %s", key, e)
      return False

  def _remember(self, key: str) -> None:
    try:
      self.ctx.cache.put(key, self.ctx.settings.dedup_cache_ttl_seconds)
    except Exception as e:  # noqa: BLE001
      logger.warning("Dedup cache write failed for %s: %s", key, e)

  def _already_written(self, key: str, full_name: str, gauge_name: str, labels: tuple[str, ...]) -> bool:
    # a cached key only counts while its series is still exported; pruned series are rewritten
    return (gauge_name, labels) in self._series.get(full_name, ()) and self._seen(key)

  # -- fetching ----------------------------------------------------------------

  def window_start(self) -> str:
    start = self.ctx.clock() - self.ctx.settings.workflow_run_window_seconds
    return datetime.fromtimestamp(start, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

  def get_recent_workflow_runs(self, owner: str, repo: str):
    created = ">=" + self.window_start()
    return self.ctx.fetch_all(
      lambda page, per_page: self.ctx.client.list_workflow_runs(owner, repo, created=created, page=page, per_page=per_page),
      description=f"ListRepositoryWorkflowRuns {owner}/{repo}",
    )

  def get_workflow_jobs(self, owner: str, repo: str, run_id: int):
    return self.ctx.fetch_all(
      lambda page, per_page: self.ctx.client.list_workflow_jobs(owner, repo, run_id, page=page, per_page=per_page),
      description=f"ListWorkflowJobs {owner}/{repo} run={run_id}",
    )

  def get_run_usage(self, owner: str, repo: str, run_id: int) -> Optional[dict[str, Any]]:
    return self.ctx.fetch_one(
      lambda: self.ctx.client.get_workflow_run_usage(owner, repo, run_id),
      description=f"GetWorkflowRunUsageByID {owner}/{repo} run={run_id}",
    )

  # -- one cycle ---------------------------------------------------------------

  def collect(self) -> CycleStats:
    stats = CycleStats()

    for full_name in self.ctx.repositories.get():
      if self.ctx.stop.is_set():
        # not polled this cycle, so its previous series stay
        stats.incomplete.add(full_name)
        continue
      stats.repositories += 1
      try:
        self.collect_repository(full_name, stats)
      except Exception as e:  # noqa: BLE001
        logger.exception("Workflow collection failed for %s: %s", full_name, e)
        stats.incomplete.add(full_name)

    self._prune(stats)
    self.ctx.cache.purge_expired()

    logger.info(
      "Workflow cycle done: repos=%s runs=%s jobs=%s cache_hits=%s incomplete=%s pruned=%s",
      stats.repositories, stats.runs, stats.jobs, stats.cache_hits, len(stats.incomplete), stats.pruned,
    )
    return stats

  def collect_repository(self, full_name: str, stats: CycleStats) -> None:
    parts = split_full_name(full_name)
    if parts is None:
      return
    owner, repo = parts

    runs = self.get_recent_workflow_runs(owner, repo)
    if not runs.complete:
      stats.incomplete.add(full_name)
    stats.runs += len(runs)

    for run in runs:
      self.process_run(owner, repo, full_name, run, stats)

  def process_run(self, owner: str, repo: str, full_name: str, run: dict[str, Any], stats: CycleStats) -> None:
    fields = get_relevant_fields(full_name, run, self.ctx.metrics.workflow_fields)
    run_id = run.get("id")
    key = run_cache_key(full_name, run)

    if self._already_written(key, full_name, RUN_STATUS, fields):
      stats.cache_hits += 1
    else:
      logger.debug("Cache missed for workflow run %s: %s", full_name, run.get("name"))
      self._gauges[RUN_STATUS].labels(*fields).set(run_conclusion_code(run.get("conclusion")))

      usage = None
      if self.ctx.settings.fetch_workflow_run_usage and run_id is not None:
        usage = self.get_run_usage(owner, repo, run_id)
      self._gauges[RUN_DURATION].labels(*fields).set(run_duration_ms(run, usage))
      self._remember(key)

    stats.observe(full_name, RUN_STATUS, fields)
    stats.observe(full_name, RUN_DURATION, fields)

    if run_id is None:
      logger.warning("Workflow run without id in %s, skipping its jobs", full_name)
      return

    jobs = self.get_workflow_jobs(owner, repo, run_id)
    if not jobs.complete:
      stats.incomplete.add(full_name)
    stats.jobs += len(jobs)

    for job in jobs:
      self.process_job(owner, repo, full_name, run, job, stats)

  def process_job(self, owner: str, repo: str, full_name: str, run: dict[str, Any], job: dict[str, Any], stats: CycleStats) -> None:
    labels = job_labels(owner, repo, run, job)
    completed = job.get("status") == "completed"
    key = job_cache_key(full_name, run, job)

    if self._already_written(key, full_name, JOB_STATUS, labels):
      stats.cache_hits += 1
    else:
      logger.debug("Cache missed for job run %s: %s", full_name, job.get("name"))
      if completed:
        self._gauges[JOB_DURATION].labels(*labels).set(job_duration_ms(job))
      self._gauges[JOB_STATUS].labels(*labels).set(job_conclusion_code(job.get("conclusion")))
      self._remember(key)

    if completed:
      stats.observe(full_name, JOB_DURATION, labels)
    stats.observe(full_name, JOB_STATUS, labels)

  def _prune(self, stats: CycleStats) -> None:
    current: dict[str, set[SeriesKey]] = {name: set(series) for name, series in stats.series.items()}
    for full_name in stats.incomplete:
      current.setdefault(full_name, set()).update(self._series.get(full_name, ()))

    alive: set[SeriesKey] = set()
    for series in current.values():
      alive.update(series)

    stale: set[SeriesKey] = set()
    for series in self._series.values():
      stale.update(series - alive)

    for gauge_name, labels in stale:
      remove_series(self._gauges[gauge_name], labels)
    stats.pruned = len(stale)

    self._series = current
