"""
Shared fixtures: a controllable clock, a stop signal whose waits advance that
clock, an in-memory GitHub client and a context wired to a private registry.
"""

from __future__ import annotations

import pytest
from prometheus_client import CollectorRegistry

from actions_exporter.context import ExporterContext, RepositoryList
from actions_exporter.dedup import DedupCache
from actions_exporter.github import Page
from actions_exporter.metrics import Metrics
from actions_exporter.settings import Settings

NOW = 1_700_000_000.0  # 2023-11-14T22:13:20Z

RUN_FIELDS = ["repo", "id", "head_branch", "workflow", "event", "status"]

class FakeClock:
  def __init__(self, now: float = NOW):
    self.now = now

  def __call__(self) -> float:
    return self.now

  def advance(self, seconds: float) -> None:
    self.now += seconds

class FakeStop:
  """ Stand-in for threading.Event: `wait` returns immediately but moves the clock """

  def __init__(self, clock: FakeClock):
    self.clock = clock
    self.waits: list[float] = []
    self._set = False

  def is_set(self) -> bool:
    return self._set

  def set(self) -> None:
    self._set = True

  def wait(self, timeout=None) -> bool:
    self.waits.append(timeout)
    if timeout:
      self.clock.advance(timeout)
    return self._set

def paged(items: list, page: int, per_page: int) -> Page:
  start = (page - 1) * per_page
  end = start + per_page
  return Page(items=list(items[start:end]), next_page=page + 1 if end < len(items) else None)

class FakeGitHubClient:
  def __init__(self):
    self.org_repos: dict[str, list] = {}
    self.runs: dict[str, list] = {}
    self.jobs: dict[int, list] = {}
    self.usage: dict[int, dict] = {}
    self.org_runners: dict[str, list] = {}
    self.enterprise_runners: dict[str, list] = {}
    self.repo_runners: dict[str, list] = {}
    self.rate_limit = {"resources": {"core": {"remaining": 4321, "reset": int(NOW) + 600}}}
    self.errors: dict[str, Exception] = {}
    self.calls: list[tuple] = []

  def _record(self, name: str, *args) -> None:
    self.calls.append((name,) + args)
    err = self.errors.get(name)
    if err is not None:
      raise err

  def calls_to(self, name: str) -> list[tuple]:
    return [c for c in self.calls if c[0] == name]

  def list_org_repos(self, org, page=1, per_page=100):
    self._record("list_org_repos", org, page)
    return paged(self.org_repos.get(org, []), page, per_page)

  def list_workflow_runs(self, owner, repo, created=None, page=1, per_page=100):
    self._record("list_workflow_runs", f"{owner}/{repo}", created, page)
    return paged(self.runs.get(f"{owner}/{repo}", []), page, per_page)

  def list_workflow_jobs(self, owner, repo, run_id, page=1, per_page=100):
    self._record("list_workflow_jobs", f"{owner}/{repo}", run_id, page)
    return paged(self.jobs.get(run_id, []), page, per_page)

  def get_workflow_run_usage(self, owner, repo, run_id):
    self._record("get_workflow_run_usage", f"{owner}/{repo}", run_id)
    return self.usage.get(run_id, {})

  def list_org_runners(self, org, page=1, per_page=100):
    self._record("list_org_runners", org, page)
    return paged(self.org_runners.get(org, []), page, per_page)

  def list_enterprise_runners(self, enterprise, page=1, per_page=100):
    self._record("list_enterprise_runners", enterprise, page)
    return paged(self.enterprise_runners.get(enterprise, []), page, per_page)

  def list_repo_runners(self, owner, repo, page=1, per_page=100):
    self._record("list_repo_runners", f"{owner}/{repo}", page)
    return paged(self.repo_runners.get(f"{owner}/{repo}", []), page, per_page)

  def get_rate_limit(self):
    self._record("get_rate_limit")
    return self.rate_limit

# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock():
  return FakeClock()

@pytest.fixture
def stop(clock):
  return FakeStop(clock)

@pytest.fixture
def registry():
  return CollectorRegistry()

@pytest.fixture
def client():
  return FakeGitHubClient()

@pytest.fixture
def make_ctx(clock, stop, registry, client):
  """ Builds a context around the shared fakes; settings can be overridden per test """

  def _make(**overrides) -> ExporterContext:
    options = {
      "github_token": "fake-token",
      "repositories": ["octo/app"],
      "organizations": ["octo"],
      "workflow_fields": list(RUN_FIELDS),
    }
    options.update(overrides)
    settings = Settings(**options)
    return ExporterContext(
      settings=settings,
      client=client,
      metrics=Metrics(settings.workflow_fields, namespace="github", registry=registry),
      cache=DedupCache(max_entries=settings.dedup_cache_max_entries, clock=clock),
      repositories=RepositoryList(list(settings.repositories)),
      stop=stop,
      clock=clock,
    )

  return _make

@pytest.fixture
def ctx(make_ctx):
  return make_ctx()
