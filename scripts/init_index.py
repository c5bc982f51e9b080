"""검색 인덱스 초기화 - 인덱스가 없으면 만들고 Ready 상태까지 기다린다.

Usage:
    python -m scripts.init_index --owner acme --repo widgets
"""

import argparse

from issue_context.backend import create_backend
from issue_context.config import settings
from issue_context.logging_config import setup_logging
from issue_context.models import index_name


def init_index(owner: str, repo: str, backend: str | None = None) -> None:
    index = index_name(owner, repo)
    with create_backend(index, backend) as store:
        store.ensure_index()
    print(f"Index '{index}' initialized successfully.")


def main():
    parser = argparse.ArgumentParser(description="검색 인덱스를 생성합니다.")
    parser.add_argument("--owner", required=True)
    parser.add_argument("--repo", required=True)
    parser.add_argument("--backend", choices=["vector", "graph"], default=settings.backend)
    args = parser.parse_args()

    setup_logging()
    init_index(args.owner, args.repo, args.backend)


if __name__ == "__main__":
    main()
