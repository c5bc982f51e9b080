"""유사 이슈 목록을 이슈 코멘트용 Markdown으로 만든다."""

from issue_context.errors import NotFoundError
from issue_context.models import Issue

SIMILAR_ISSUES_HEADER = "## Other issues similar to this one are: \n"


def select_similar(issues: list[Issue], exclude_id: str | None, count: int = 3) -> list[Issue]:
    """질의한 이슈 자신을 빼고 앞에서부터 count개를 고른다."""
    return [issue for issue in issues if issue.id != exclude_id][:count]


def format_similar_issues(issues: list[Issue]) -> str:
    """번호 매긴 Markdown 링크 목록을 만든다.

    예:
        ## Other issues similar to this one are:
        1. [Crash on start #12 (open)](https://github.com/o/r/issues/12)

    Raises:
        NotFoundError: 이슈가 하나도 없을 때.
    """
    if not issues:
        raise NotFoundError("No similar issues found")

    text = SIMILAR_ISSUES_HEADER
    for number, issue in enumerate(issues, start=1):
        text += f"{number}. [{issue.title} #{issue.id} ({issue.state})]({issue.url})\n"
    return text
