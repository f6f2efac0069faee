"""Environment-driven configuration for the exporter.

Every knob is an environment variable with a default; `Settings.from_env`
reads them once at startup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import urlparse

import logging
import os
import time

DEFAULT_API_HOST = "api.github.com"
DEFAULT_WORKFLOW_FIELDS = "repo,id,node_id,head_branch,head_sha,run_number,workflow_id,workflow,event,status"

class ConfigurationError(ValueError):
  pass

def _split_list(raw: Optional[str]) -> list[str]:
  return [item.strip() for item in (raw or "").split(",") if item.strip()]

def _to_bool(raw: Optional[str], default: bool) -> bool:
  if raw is None or not raw.strip():
    return default
  return raw.strip().lower() in ("1", "true", "yes", "on")

def _to_int(environ: Mapping[str, str], name: str, default: int) -> int:
  raw = environ.get(name)
  if raw is None or not raw.strip():
    return default
  try:
    value = int(raw)
  except ValueError as e:
    raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
  if value <= 0:
    raise ConfigurationError(f"{name} must be positive, got {value}")
  return value

def get_enterprise_api_url(base_url: str) -> str:
  """ Normalizes an enterprise host or URL into its REST API root (`.../api/v3`) """
  if "://" not in base_url:
    base_url = f"https://{base_url}"
  endpoint = urlparse(base_url)
  path = endpoint.path
  if not path.endswith("/"):
    path += "/"
  if (
    not path.endswith("/api/v3/")
    and not endpoint.netloc.startswith("api.")
    and ".api." not in endpoint.netloc
  ):
    path += "api/v3/"
  return f"{endpoint.scheme}://{endpoint.netloc}{path.rstrip('/')}"

@dataclass
class Settings:
  # GitHub API
  github_token: str = ""
  github_api_url: str = DEFAULT_API_HOST
  request_timeout_seconds: float = 10.0
  per_page: int = 100
  http_cache_max_entries: int = 1000

  # What to poll
  organizations: list[str] = field(default_factory=list)
  repositories: list[str] = field(default_factory=list)
  enterprises: list[str] = field(default_factory=list)
  workflow_fields: list[str] = field(default_factory=lambda: _split_list(DEFAULT_WORKFLOW_FIELDS))
  fetch_workflow_run_usage: bool = True
  fetch_repository_runners: bool = True

  # Timing
  refresh_seconds: int = 30
  workflow_run_window_seconds: int = 3600

  # Dedup cache
  dedup_cache_max_entries: int = 100_000
  dedup_cache_ttl_seconds: int = 3600

  # Exposition
  export_port: int = 9999
  metrics_namespace: str = "github"

  log_level: str = "INFO"

  @property
  def discovery_interval_seconds(self) -> int:
    return self.refresh_seconds * 5

  @property
  def api_base_url(self) -> str:
    host = self.github_api_url.strip().rstrip("/")
    if host in (DEFAULT_API_HOST, f"https://{DEFAULT_API_HOST}"):
      return f"https://{DEFAULT_API_HOST}"
    return get_enterprise_api_url(host)

  @classmethod
  def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
    env = os.environ if environ is None else environ

    timeout_raw = env.get("REQUEST_TIMEOUT_SECONDS", "10")
    try:
      timeout = float(timeout_raw)
    except ValueError as e:
      raise ConfigurationError(f"REQUEST_TIMEOUT_SECONDS must be a number, got {timeout_raw!r}") from e

    fields = _split_list(env.get("WORKFLOW_FIELDS")) or _split_list(DEFAULT_WORKFLOW_FIELDS)

    return cls(
      github_token=(env.get("GITHUB_TOKEN") or env.get("GITHUB_API_TOKEN") or "").strip(),
      github_api_url=env.get("GITHUB_API_URL", DEFAULT_API_HOST) or DEFAULT_API_HOST,
      request_timeout_seconds=timeout,
      per_page=_to_int(env, "PER_PAGE", 100),
      http_cache_max_entries=_to_int(env, "HTTP_CACHE_MAX_ENTRIES", 1000),
      organizations=_split_list(env.get("GITHUB_ORGAS")),
      repositories=_split_list(env.get("GITHUB_REPOS")),
      enterprises=_split_list(env.get("GITHUB_ENTERPRISES")),
      workflow_fields=fields,
      fetch_workflow_run_usage=_to_bool(env.get("FETCH_WORKFLOW_RUN_USAGE"), True),
      fetch_repository_runners=_to_bool(env.get("FETCH_REPOSITORY_RUNNERS"), True),
      refresh_seconds=_to_int(env, "GITHUB_REFRESH", 30),
      workflow_run_window_seconds=_to_int(env, "WORKFLOW_RUN_WINDOW_SECONDS", 3600),
      dedup_cache_max_entries=_to_int(env, "DEDUP_CACHE_MAX_ENTRIES", 100_000),
      dedup_cache_ttl_seconds=_to_int(env, "DEDUP_CACHE_TTL_SECONDS", 3600),
      export_port=_to_int(env, "EXPORT_PORT", 9999),
      metrics_namespace=env.get("METRICS_NAMESPACE", "github"),
      log_level=env.get("LOG_LEVEL", "INFO"),
    )

# ----------------------------------------------------------------------------
# LOGS
# ----------------------------------------------------------------------------

def setup_logging(level_name: str = "INFO") -> None:
  level = getattr(logging, level_name.upper(), logging.INFO)
  logging.basicConfig(
    level=level,
    format="%(asctime)sZ | %(levelname)-8s | %(name)s | %(message)s",
  )

  logging.Formatter.converter = time.gmtime
