"""검색/인덱싱 예외 계층.

호출자가 "백엔드 장애"와 "관련 결과 없음"을 구분할 수 있도록 종류별로 나눈다.
"""

from typing import Any


class RetrievalError(Exception):
    """모든 검색/인덱싱 오류의 기반 클래스."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class BackendError(RetrievalError):
    """백엔드 호출이 실패했을 때."""


class BackendConnectionError(BackendError):
    """연결/인증 실패. 작업 전체를 중단한다."""


class QuerySyntaxError(BackendError):
    """쿼리 문법 오류. 이스케이프 결함을 의미한다."""


class IndexNotReadyError(RetrievalError):
    """인덱스가 제한 시간 안에 Ready 상태가 되지 않았을 때."""

    def __init__(self, index_name: str, elapsed: float, state: str):
        super().__init__(
            f'Index "{index_name}" not ready after {elapsed:.1f} seconds (state={state})',
            details={"index": index_name, "elapsed": elapsed, "state": state},
        )


class IndexingError(RetrievalError):
    """레코드 변환/적재 실패. 현재 배치를 롤백 없이 중단한다."""


class NotFoundError(RetrievalError):
    """쿼리는 성공했지만 일치하는 결과가 없을 때."""


class EmbeddingError(RetrievalError):
    """임베딩 API 응답이 설정과 맞지 않을 때 (예: 차원 불일치)."""
