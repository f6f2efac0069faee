"""Resolves the configured organizations into the list of repositories to poll."""

from __future__ import annotations

from typing import Optional

import logging

from actions_exporter.context import ExporterContext

logger = logging.getLogger(__name__)

def split_full_name(full_name: str) -> Optional[tuple[str, str]]:
  owner, _, repo = full_name.partition("/")
  if not owner or not repo or "/" in repo:
    logger.warning("Ignoring malformed repository name %r (expected owner/repo)", full_name)
    return None
  return owner, repo

def get_all_repos_for_org(ctx: ExporterContext, org: str) -> tuple[list[str], bool]:
  """ Returns the org's `owner/repo` names and whether the listing was complete """
  result = ctx.fetch_all(
    lambda page, per_page: ctx.client.list_org_repos(org, page=page, per_page=per_page),
    description=f"ListByOrg {org}",
  )
  names = []
  for repo in result:
    full_name = repo.get("full_name")
    if full_name:
      names.append(full_name)
  return names, result.complete

def discover_repositories(ctx: ExporterContext) -> list[str]:
  """ One discovery cycle: resolve the active set and publish it in a single replace """
  static = ctx.settings.repositories
  if static:
    repositories = list(static)
  else:
    seen = set()
    repositories = []
    failed = []
    for org in ctx.settings.organizations:
      names, complete = get_all_repos_for_org(ctx, org)
      if not complete:
        failed.append(org)
      for full_name in names:
        if full_name not in seen:
          seen.add(full_name)
          repositories.append(full_name)

    previous = ctx.repositories.get()
    if failed and previous:
      # a partial listing would drop repositories that still exist
      logger.warning("Repository discovery incomplete for %s; keeping the %s known repositories", ", ".join(failed), len(previous))
      return list(previous)

  ctx.repositories.replace(repositories)
  logger.info("Repository discovery: %s repositories active", len(repositories))
  return repositories
