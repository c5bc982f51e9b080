"""저장소 인덱싱 - 클론 → 브랜치별 Document 변환 → 임베딩 → 백엔드 저장.

Usage:
    python -m scripts.index_repo --owner acme --repo widgets
    python -m scripts.index_repo --owner acme --repo widgets --branch main --branch develop --no-issues
    python -m scripts.index_repo --owner acme --repo widgets --ignore "*.png" --ignore "vendor/*"
"""

import argparse

from issue_context.backend import create_backend
from issue_context.config import settings
from issue_context.embedding import embed_single
from issue_context.git_repo import AuthOptions
from issue_context.github_client import GitHubClient
from issue_context.indexer import index_repository
from issue_context.logging_config import setup_logging
from issue_context.models import index_name


def print_progress(namespace: str, upserted: int, total: int):
    print(f"  ✅ {namespace}: {upserted}/{total}")


def main():
    parser = argparse.ArgumentParser(description="저장소 코드와 이슈를 검색 인덱스에 적재합니다.")
    parser.add_argument("--owner", required=True, help="저장소 소유자")
    parser.add_argument("--repo", required=True, help="저장소 이름")
    parser.add_argument(
        "--branch", action="append", default=[],
        help="대상 브랜치 (여러 번 지정 가능, 생략하면 전체 브랜치)",
    )
    parser.add_argument("--url", help="클론 URL (기본: https://<host>/<owner>/<repo>.git)")
    parser.add_argument(
        "--ignore", action="append", default=None,
        help="건너뛸 파일 glob 패턴 (여러 번 지정 가능, 생략하면 RAG_INDEX_IGNORE)",
    )
    parser.add_argument("--backend", choices=["vector", "graph"], default=settings.backend)
    parser.add_argument("--no-issues", action="store_true", help="이슈는 적재하지 않는다")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    setup_logging(level=args.log_level)

    auth = AuthOptions(username=settings.github_username, token=settings.github_token)
    index = index_name(args.owner, args.repo)
    print(f"📂 {args.owner}/{args.repo} → index '{index}' ({args.backend})")

    with create_backend(index, args.backend) as backend:
        if args.no_issues:
            report = index_repository(
                args.owner, args.repo, backend, embed_single,
                auth=auth, branches=args.branch, url=args.url, ignore=args.ignore,
                on_batch=print_progress,
            )
        else:
            with GitHubClient() as github:
                report = index_repository(
                    args.owner, args.repo, backend, embed_single,
                    auth=auth, branches=args.branch, url=args.url, ignore=args.ignore,
                    issue_source=github, on_batch=print_progress,
                )

    print(
        f"\n총 브랜치 {report.branches}개, Document {report.documents}개, "
        f"이슈 {report.issues}개 적재 완료 (건너뛴 파일 {report.skipped_files}개)"
    )


if __name__ == "__main__":
    main()
