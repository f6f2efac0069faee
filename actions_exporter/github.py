"""Thin REST client for the GitHub Actions endpoints the exporter polls.

List operations return a single `Page`; walking the pages is the job of
`actions_exporter.pagination`. Quota exhaustion is raised as `RateLimitError`
carrying the reset timestamp, every other failure as `GitHubError`.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import logging
import threading
import time

import requests
from requests.adapters import HTTPAdapter

from actions_exporter import __version__

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
DEFAULT_RETRY_AFTER_SECONDS = 60

class GitHubError(RuntimeError):
  pass

class RateLimitError(GitHubError):
  """ Quota exhausted; `reset_at` is the epoch second at which requests may resume """

  def __init__(self, message: str, reset_at: float):
    super().__init__(message)
    self.reset_at = float(reset_at)

  @property
  def reset_time(self) -> datetime:
    return datetime.fromtimestamp(self.reset_at, tz=timezone.utc)

@dataclass
class Page:
  items: list[dict[str, Any]]
  next_page: Optional[int] = None

def _next_page_number(resp: requests.Response) -> Optional[int]:
  next_link = (resp.links or {}).get("next") or {}
  url = next_link.get("url")
  if not url:
    return None
  values = parse_qs(urlparse(url).query).get("page")
  if not values:
    return None
  try:
    return int(values[0])
  except ValueError:
    return None

def rate_limit_reset_at(resp: requests.Response, now: Optional[float] = None) -> Optional[float]:
  """ Returns the reset epoch if `resp` is a quota-exhaustion response, else None """
  if resp.status_code not in (403, 429):
    return None

  now = time.time() if now is None else now
  headers = resp.headers
  remaining = headers.get("X-RateLimit-Remaining")
  reset = headers.get("X-RateLimit-Reset")
  retry_after = headers.get("Retry-After")

  if retry_after:
    try:
      return now + max(0.0, float(retry_after))
    except ValueError:
      return now + DEFAULT_RETRY_AFTER_SECONDS

  exhausted = remaining is not None and remaining.strip() == "0"
  if not exhausted and "rate limit" not in (resp.text or "").lower():
    return None

  if reset:
    try:
      return float(int(reset))
    except ValueError:
      pass
  return now + DEFAULT_RETRY_AFTER_SECONDS

@dataclass
class CachedResponse:
  etag: str
  payload: Any
  next_page: Optional[int] = None

class ResponseCache:
  """ Bounded ETag store for conditional GETs. 304 answers don't count against the quota """

  def __init__(self, max_entries: int = 1000):
    self.max_entries = max_entries
    self._entries: OrderedDict[str, CachedResponse] = OrderedDict()
    self._lock = threading.Lock()

  def get(self, key: str) -> Optional[CachedResponse]:
    with self._lock:
      entry = self._entries.get(key)
      if entry is not None:
        self._entries.move_to_end(key)
      return entry

  def put(self, key: str, entry: CachedResponse) -> None:
    with self._lock:
      self._entries[key] = entry
      self._entries.move_to_end(key)
      while len(self._entries) > self.max_entries:
        self._entries.popitem(last=False)

  def __len__(self) -> int:
    return len(self._entries)

def _cache_key(path: str, params: Optional[dict[str, Any]]) -> str:
  if not params:
    return path
  return f"{path}?{urlencode(sorted((k, str(v)) for k, v in params.items()))}"

class GitHubClient:
  def __init__(
    self,
    token: str,
    base_url: str = "https://api.github.com",
    timeout: float = 10.0,
    pool_size: int = 10,
    cache_max_entries: int = 1000,
  ):
    if not token:
      raise GitHubError("GitHub token is required to call the API")

    self.base_url = base_url.rstrip("/")
    self.timeout = timeout
    self.cache = ResponseCache(cache_max_entries)
    self.session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    self.session.mount("http://", adapter)
    self.session.mount("https://", adapter)
    self.session.headers.update({
      "Authorization": f"Bearer {token}",
      "Accept": "application/vnd.github+json",
      "X-GitHub-Api-Version": API_VERSION,
      "User-Agent": f"actions-exporter/{__version__}",
    })

  def _get(self, path: str, params: Optional[dict[str, Any]] = None, headers: Optional[dict[str, str]] = None) -> requests.Response:
    url = f"{self.base_url}{path}"
    try:
      resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
    except requests.RequestException as e:
      raise GitHubError(f"Network error for {path}: {e}") from e

    reset_at = rate_limit_reset_at(resp)
    if reset_at is not None:
      raise RateLimitError(f"Rate limit exhausted for {path}", reset_at=reset_at)

    if resp.status_code == 401:
      raise GitHubError("Unauthorized (401): invalid or expired token")

    if resp.status_code >= 400:
      raise GitHubError(f"HTTP {resp.status_code} for {path}: {resp.text[:500]}")

    return resp

  def _get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> tuple[Any, Optional[int]]:
    """ GET with If-None-Match when an ETag is cached; returns (payload, next page) """
    key = _cache_key(path, params)
    cached = self.cache.get(key)
    headers = {"If-None-Match": cached.etag} if cached is not None else None

    resp = self._get(path, params, headers=headers)
    if resp.status_code == 304 and cached is not None:
      logger.debug("304 Not Modified for %s, serving cached payload", key)
      return cached.payload, cached.next_page

    try:
      payload = resp.json()
    except ValueError as e:
      raise GitHubError(f"Invalid JSON from {path}: {e}") from e

    next_page = _next_page_number(resp)
    etag = resp.headers.get("ETag")
    if etag:
      self.cache.put(key, CachedResponse(etag=etag, payload=payload, next_page=next_page))
    return payload, next_page

  def _list(self, path: str, key: Optional[str], page: int, per_page: int, **params: Any) -> Page:
    query = {"per_page": per_page, "page": page}
    query.update({k: v for k, v in params.items() if v is not None})
    payload, next_page = self._get_json(path, query)

    if key is None:
      items = payload if isinstance(payload, list) else []
    elif isinstance(payload, dict):
      items = payload.get(key) or []
    else:
      items = []
    return Page(items=list(items), next_page=next_page)

  # --------------------------------------------------------------------------
  # Listing
  # --------------------------------------------------------------------------

  def list_org_repos(self, org: str, page: int = 1, per_page: int = 100) -> Page:
    return self._list(f"/orgs/{org}/repos", None, page, per_page)

  def list_workflow_runs(self, owner: str, repo: str, created: Optional[str] = None, page: int = 1, per_page: int = 100) -> Page:
    return self._list(f"/repos/{owner}/{repo}/actions/runs", "workflow_runs", page, per_page, created=created)

  def list_workflow_jobs(self, owner: str, repo: str, run_id: int, page: int = 1, per_page: int = 100) -> Page:
    return self._list(f"/repos/{owner}/{repo}/actions/runs/{run_id}/jobs", "jobs", page, per_page, filter="all")

  def list_org_runners(self, org: str, page: int = 1, per_page: int = 100) -> Page:
    return self._list(f"/orgs/{org}/actions/runners", "runners", page, per_page)

  def list_enterprise_runners(self, enterprise: str, page: int = 1, per_page: int = 100) -> Page:
    return self._list(f"/enterprises/{enterprise}/actions/runners", "runners", page, per_page)

  def list_repo_runners(self, owner: str, repo: str, page: int = 1, per_page: int = 100) -> Page:
    return self._list(f"/repos/{owner}/{repo}/actions/runners", "runners", page, per_page)

  # --------------------------------------------------------------------------
  # Single objects
  # --------------------------------------------------------------------------

  def get_workflow_run_usage(self, owner: str, repo: str, run_id: int) -> dict[str, Any]:
    payload, _ = self._get_json(f"/repos/{owner}/{repo}/actions/runs/{run_id}/timing")
    return payload if isinstance(payload, dict) else {}

  def get_rate_limit(self) -> dict[str, Any]:
    payload, _ = self._get_json("/rate_limit")
    return payload if isinstance(payload, dict) else {}

  def validate_token(self) -> None:
    data = self.get_rate_limit()
    core = (data.get("resources") or {}).get("core") or {}
    logger.info("GitHub token OK - remaining=%s, reset_unix=%s", core.get("remaining"), core.get("reset"))
