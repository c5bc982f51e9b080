"""검색 인덱스 삭제 - 레코드 단위 삭제 또는 인덱스 전체 삭제.

인덱스 전체 삭제는 되돌릴 수 없으므로 인덱스 이름을 다시 입력받아 확인한다.

Usage:
    python -m scripts.delete_index --owner acme --repo widgets --id main@README.md
    python -m scripts.delete_index --owner acme --repo widgets --all
"""

import argparse
import sys

from issue_context.backend import create_backend
from issue_context.config import settings
from issue_context.logging_config import setup_logging
from issue_context.models import NAMESPACE_CODEBASE, NAMESPACE_ISSUES, index_name


def confirm_drop(index: str, assume_yes: bool = False) -> str:
    """사용자에게 인덱스 이름을 다시 입력받아 반환한다."""
    if assume_yes:
        return index
    print(f"⚠ 인덱스 '{index}'의 모든 레코드가 삭제됩니다.")
    return input("계속하려면 인덱스 이름을 입력하세요: ").strip()


def main():
    parser = argparse.ArgumentParser(description="검색 인덱스 레코드 또는 인덱스 전체를 삭제합니다.")
    parser.add_argument("--owner", required=True)
    parser.add_argument("--repo", required=True)
    parser.add_argument("--backend", choices=["vector", "graph"], default=settings.backend)
    parser.add_argument("--namespace", choices=[NAMESPACE_CODEBASE, NAMESPACE_ISSUES], default=NAMESPACE_CODEBASE)
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--id", action="append", dest="ids", help="삭제할 레코드 id (여러 번 지정 가능)")
    group.add_argument("--all", action="store_true", help="인덱스 전체 삭제")
    parser.add_argument("--yes", action="store_true", help="확인 입력을 건너뛴다")
    args = parser.parse_args()

    setup_logging()
    index = index_name(args.owner, args.repo)

    with create_backend(index, args.backend) as backend:
        if args.ids:
            deleted = backend.delete_records(args.ids, args.namespace)
            print(f"{deleted}개 레코드 삭제 완료")
            return

        confirmation = confirm_drop(backend.index_name, args.yes)
        if confirmation != backend.index_name:
            print("확인 문자열이 일치하지 않아 취소합니다.")
            sys.exit(1)
        backend.drop_index(confirm=confirmation)
        print(f"Index '{backend.index_name}' 삭제 완료")


if __name__ == "__main__":
    main()
