"""GitHub REST API 클라이언트 - 인덱싱할 이슈와 코멘트 조회."""

import logging

import httpx

from issue_context.config import settings
from issue_context.models import Issue

logger = logging.getLogger(__name__)

PER_PAGE = 100


class GitHubClient:
    """GitHub REST API v3 클라이언트."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
    ):
        self._base_url = (base_url or settings.github_api_url).rstrip("/")
        self._token = token or settings.github_token
        headers = {"Accept": "application/vnd.github+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._client = httpx.Client(
            base_url=self._base_url,
            headers=headers,
            timeout=30.0,
        )

    def _get_paginated(self, path: str, params: dict) -> list[dict]:
        """page 파라미터를 올려가며 빈 페이지가 나올 때까지 모은다."""
        items: list[dict] = []
        page = 1
        while True:
            resp = self._client.get(path, params={**params, "per_page": PER_PAGE, "page": page})
            resp.raise_for_status()
            batch = resp.json()
            if not batch:
                break
            items.extend(batch)
            if len(batch) < PER_PAGE:
                break
            page += 1
        return items

    # ── 이슈 조회 ─────────────────────────────────────────────

    def list_issues(self, owner: str, repo: str, state: str = "all") -> list[dict]:
        """저장소의 이슈 목록을 조회한다.

        issues API는 Pull Request도 함께 반환하므로 pull_request 키가 있는 항목은 뺀다.
        """
        items = self._get_paginated(f"/repos/{owner}/{repo}/issues", {"state": state})
        return [item for item in items if "pull_request" not in item]

    def list_comments(self, owner: str, repo: str, number: int) -> list[dict]:
        """이슈 코멘트를 작성 시간 오름차순으로 조회한다."""
        return self._get_paginated(
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            {"sort": "created", "direction": "asc"},
        )

    def fetch_issues(self, owner: str, repo: str) -> list[Issue]:
        """모든 이슈를 코멘트와 함께 Issue 레코드로 변환한다."""
        issues = []
        for item in self.list_issues(owner, repo):
            comments = self.list_comments(owner, repo, item["number"]) if item.get("comments") else []
            issues.append(Issue.from_github(item, comments))
        logger.info("이슈 %d개 조회: %s/%s", len(issues), owner, repo)
        return issues

    def close(self):
        """HTTP 클라이언트를 닫는다."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
