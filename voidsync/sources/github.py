from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from voidsync.models import Project
from voidsync.sources.base import AdapterResult, ProviderError, SourceAdapter
from voidsync.store import all_projects, get_fragment, merge_fragment, set_scalar
from voidsync.utils import parse_iso

log = logging.getLogger(__name__)


def parse_github_url(url: str) -> tuple[str, str | None] | None:
    """``(owner, repo)`` from a GitHub URL or ``owner/repo`` string; repo may be ``None``."""
    text = (url or "").strip()
    if not text:
        return None
    if "github.com" in text:
        text = text.split("github.com", 1)[1]
    parts = [p for p in text.strip("/").split("/") if p]
    if not parts or parts[0].startswith(("http", "www")):
        return None
    owner = parts[0]
    repo = parts[1].removesuffix(".git") if len(parts) > 1 else None
    return owner, repo or None


def summarize_repos(repos: list[dict[str, Any]]) -> dict[str, Any]:
    """Aggregate an org's repositories into one set of counters."""
    stars = sum(int(r.get("stargazers_count") or 0) for r in repos)
    forks = sum(int(r.get("forks_count") or 0) for r in repos)
    issues = sum(int(r.get("open_issues_count") or 0) for r in repos)
    top = max(repos, key=lambda r: int(r.get("stargazers_count") or 0), default={})
    pushed = [r["pushed_at"] for r in repos if r.get("pushed_at")]
    return {
        "repo_count": len(repos),
        "stars": stars,
        "forks": forks,
        "open_issues": issues,
        "language": top.get("language") or "",
        "pushed_at": max(pushed) if pushed else None,
        "top_repo": top.get("full_name"),
    }


def summarize_repo(repo: dict[str, Any]) -> dict[str, Any]:
    return {
        "repo_count": 1,
        "stars": int(repo.get("stargazers_count") or 0),
        "forks": int(repo.get("forks_count") or 0),
        "open_issues": int(repo.get("open_issues_count") or 0),
        "language": repo.get("language") or "",
        "pushed_at": repo.get("pushed_at"),
        "top_repo": repo.get("full_name"),
    }


class GithubAdapter(SourceAdapter):
    name = "github"
    min_interval = 0.05

    def headers(self) -> dict[str, str]:
        headers = {**super().headers(), "Accept": "application/vnd.github+json"}
        if self.settings.github_token:
            headers["Authorization"] = f"Bearer {self.settings.github_token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.settings.github_api_url}{path}"

    async def remaining_quota(self) -> int:
        data = await self.get_json(self._url("/rate_limit"))
        core = ((data or {}).get("resources") or {}).get("core") or (data or {}).get("rate") or {}
        return int(core.get("remaining") or 0)

    async def fetch_owner_repos(self, owner: str) -> list[dict[str, Any]]:
        query = "?per_page=100&sort=pushed"
        try:
            data = await self.get_json(self._url(f"/orgs/{owner}/repos{query}"))
        except ProviderError as exc:
            if exc.status_code != 404:
                raise
            # not an org, try as a user account
            data = await self.get_json(self._url(f"/users/{owner}/repos{query}"))
        if not isinstance(data, list):
            raise ProviderError(self.name, f"repo listing for {owner} is not a list")
        return [r for r in data if isinstance(r, dict)]

    async def fetch_metrics(self, owner: str, repo: str | None) -> dict[str, Any]:
        if repo:
            data = await self.get_json(self._url(f"/repos/{owner}/{repo}"))
            if not isinstance(data, dict):
                raise ProviderError(self.name, f"repo {owner}/{repo} is not an object")
            return summarize_repo(data)
        return summarize_repos(await self.fetch_owner_repos(owner))

    def candidates(self, session: Session) -> list[Project]:
        return [p for p in all_projects(session) if p.github_url or get_fragment(p, self.name)]

    def resolve(self, project: Project) -> tuple[str, str | None] | None:
        fragment = get_fragment(project, self.name)
        if fragment.get("owner"):
            return fragment["owner"], fragment.get("repo")
        return parse_github_url(project.github_url)

    async def sync(self, session: Session) -> AdapterResult:
        try:
            with self.parsing("rate_limit"):
                remaining = await self.remaining_quota()
        except ProviderError as exc:
            log.warning("GitHub unavailable: %s", exc)
            return AdapterResult.unavailable(str(exc))
        if remaining <= 0:
            log.warning("GitHub rate limit exhausted, skipping run")
            return AdapterResult.unavailable("rate limit exhausted", rate_limit_remaining=0)

        projects = self.candidates(session)
        result = AdapterResult(total=len(projects), extra={"rate_limit_remaining": remaining})
        for project in projects:
            target = self.resolve(project)
            if target is None:
                result.skipped += 1
                continue
            owner, repo = target
            try:
                with self.parsing(f"{owner}/{repo or '*'}"):
                    metrics = await self.fetch_metrics(owner, repo)
            except ProviderError as exc:
                log.warning("GitHub fetch failed for %s (%s/%s): %s", project.slug, owner, repo or "*", exc)
                result.failed += 1
                continue

            set_scalar(project, "github_stars", metrics["stars"], self.name)
            set_scalar(project, "github_forks", metrics["forks"], self.name)
            set_scalar(project, "github_open_issues", metrics["open_issues"], self.name)
            set_scalar(project, "github_language", metrics["language"], self.name)
            set_scalar(project, "last_github_commit", parse_iso(metrics["pushed_at"]), self.name)
            merge_fragment(session, project, self.name, {"owner": owner, "repo": repo, **metrics})
            session.commit()
            result.enriched += 1
        return result
