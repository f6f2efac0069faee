"""Runner inventories (organization, fleet and repository scope) -> runner_status gauge."""

from __future__ import annotations

from typing import Any, Iterable

import logging

from actions_exporter.context import ExporterContext
from actions_exporter.metrics import remove_series, runner_label_string
from actions_exporter.pagination import FetchResult
from actions_exporter.repositories import split_full_name

logger = logging.getLogger(__name__)

SCOPE_ORGANIZATION = "organization"
SCOPE_FLEET = "fleet"
SCOPE_REPOSITORY = "repository"

def runner_labels(scope: str, owner: str, runner: dict[str, Any]) -> tuple[str, ...]:
  busy = runner.get("busy")
  runner_id = runner.get("id")
  return (
    scope,
    owner,
    runner.get("os") or "",
    runner.get("name") or "",
    "" if runner_id is None else str(runner_id),
    "true" if busy else "false",
    runner_label_string(runner.get("labels")),
  )

def runner_status_value(runner: dict[str, Any]) -> int:
  return 1 if runner.get("status") == "online" else 0

class RunnerCollector:
  """ Rewrites every runner_status series of one scope per cycle """

  scope = ""

  def __init__(self, ctx: ExporterContext):
    self.ctx = ctx
    self._written: set[tuple[str, ...]] = set()

  def owners(self) -> Iterable[str]:
    raise NotImplementedError

  def list_runners(self, owner: str) -> FetchResult:
    raise NotImplementedError

  def collect(self) -> int:
    observed: dict[tuple[str, ...], int] = {}
    for owner in self.owners():
      for runner in self.list_runners(owner):
        observed[runner_labels(self.scope, owner, runner)] = runner_status_value(runner)

    gauge = self.ctx.metrics.runner_status
    # runners missing from this poll disappear instead of keeping their last value
    for labels in self._written - set(observed):
      remove_series(gauge, labels)
    for labels, value in observed.items():
      gauge.labels(*labels).set(value)
    self._written = set(observed)

    online = sum(observed.values())
    logger.info("Runners (%s): %s registered, %s online", self.scope, len(observed), online)
    return len(observed)

class OrganizationRunnerCollector(RunnerCollector):
  scope = SCOPE_ORGANIZATION

  def owners(self) -> Iterable[str]:
    return self.ctx.settings.organizations

  def list_runners(self, owner: str) -> FetchResult:
    return self.ctx.fetch_all(
      lambda page, per_page: self.ctx.client.list_org_runners(owner, page=page, per_page=per_page),
      description=f"ListOrganizationRunners {owner}",
    )

class FleetRunnerCollector(RunnerCollector):
  scope = SCOPE_FLEET

  def owners(self) -> Iterable[str]:
    return self.ctx.settings.enterprises

  def list_runners(self, owner: str) -> FetchResult:
    return self.ctx.fetch_all(
      lambda page, per_page: self.ctx.client.list_enterprise_runners(owner, page=page, per_page=per_page),
      description=f"ListEnterpriseRunners {owner}",
    )

class RepositoryRunnerCollector(RunnerCollector):
  scope = SCOPE_REPOSITORY

  def owners(self) -> Iterable[str]:
    return self.ctx.repositories.get()

  def list_runners(self, owner: str) -> FetchResult:
    parts = split_full_name(owner)
    if parts is None:
      return FetchResult()
    org, repo = parts
    return self.ctx.fetch_all(
      lambda page, per_page: self.ctx.client.list_repo_runners(org, repo, page=page, per_page=per_page),
      description=f"ListRunners {owner}",
    )
