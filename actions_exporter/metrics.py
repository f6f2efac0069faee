"""Gauge definitions and the small mappers that turn API objects into label values."""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

import logging

from prometheus_client import REGISTRY, CollectorRegistry, Gauge

logger = logging.getLogger(__name__)

JOB_LABELS = (
  "org", "repo", "branch", "status", "conclusion", "runner_group",
  "runner_labels", "workflow_name", "job_name", "job_id",
)
RUNNER_LABELS = ("scope", "owner", "os", "name", "id", "busy", "runner_labels")

RUN_CONCLUSION_CODES = {
  "success": 1,
  "skipped": 2,
  "action_required": 3,
  "cancelled": 4,
  "failure": 5,
  "neutral": 6,
  "stale": 7,
  "timed_out": 8,
}

JOB_CONCLUSION_CODES = {
  "success": 1,
  "failure": 2,
  "cancelled": 3,
  "skipped": 4,
  "timed_out": 5,
  "action_required": 6,
  "neutral": 7,
}

def run_conclusion_code(conclusion: Optional[str]) -> int:
  return RUN_CONCLUSION_CODES.get(conclusion or "", 0)

def job_conclusion_code(conclusion: Optional[str]) -> int:
  return JOB_CONCLUSION_CODES.get(conclusion or "", 0)

def runner_label_string(labels: Optional[Iterable[Any]]) -> str:
  """ Comma-joins runner labels; accepts plain names or `{"name": ...}` objects """
  names = []
  for label in labels or []:
    if isinstance(label, dict):
      label = label.get("name")
    if label:
      names.append(str(label))
  return ",".join(names)

def _text(value: Any) -> str:
  return "" if value is None else str(value)

def get_field_value(repo: str, run: dict[str, Any], field: str) -> str:
  """ Label value of `field` for a workflow run; unknown fields log and yield "" """
  if field == "repo":
    return repo
  if field == "workflow":
    return _text(run.get("name"))
  if field in ("id", "node_id", "head_branch", "head_sha", "run_number", "run_attempt",
               "workflow_id", "event", "status", "conclusion"):
    return _text(run.get(field))
  if field == "actor":
    return _text((run.get("actor") or {}).get("login"))
  logger.warning("Tried to fetch invalid field '%s'", field)
  return ""

def get_relevant_fields(repo: str, run: dict[str, Any], fields: Sequence[str]) -> tuple[str, ...]:
  return tuple(get_field_value(repo, run, field) for field in fields)

def remove_series(gauge: Gauge, labels: Sequence[str]) -> None:
  try:
    gauge.remove(*labels)
  except KeyError:
    # already gone (older prometheus_client raises for unknown series)
    pass

class Metrics:
  def __init__(self, workflow_fields: Sequence[str], namespace: str = "github", registry: Optional[CollectorRegistry] = REGISTRY):
    self.workflow_fields = tuple(workflow_fields)
    self.registry = registry

    self.rate_limit_remaining = Gauge(
      "rate_limit_remaining",
      "Remaining core API requests in the current rate limit window",
      namespace=namespace,
      registry=registry,
    )
    self.runner_status = Gauge(
      "runner_status",
      "Runner status (1 online, 0 otherwise), by runner scope",
      RUNNER_LABELS,
      namespace=namespace,
      registry=registry,
    )
    self.workflow_run_status = Gauge(
      "workflow_run_status",
      "Workflow run conclusion code of runs created within the fetch window",
      self.workflow_fields,
      namespace=namespace,
      registry=registry,
    )
    self.workflow_run_duration_ms = Gauge(
      "workflow_run_duration_ms",
      "Workflow run duration in milliseconds of runs created within the fetch window",
      self.workflow_fields,
      namespace=namespace,
      registry=registry,
    )
    self.workflow_job_duration_total_ms = Gauge(
      "workflow_job_duration_total_ms",
      "Duration in milliseconds of completed workflow jobs",
      JOB_LABELS,
      namespace=namespace,
      registry=registry,
    )
    self.workflow_job_status_count = Gauge(
      "workflow_job_status_count",
      "Workflow job conclusion code",
      JOB_LABELS,
      namespace=namespace,
      registry=registry,
    )
