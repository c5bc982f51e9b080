"""관련 코드/유사 이슈 검색 - RAG의 Retrieval 단계.

백엔드(pgvector / Neo4j)와 무관하게 같은 계약을 제공한다.
백엔드에 따라 달라지는 것은 점수 정확도뿐이다 (벡터 전용 백엔드는 score=0).
"""

from issue_context.backend import BackendKind, RetrievalBackend, create_backend
from issue_context.config import settings
from issue_context.embedding import EmbeddingFn, embed_single
from issue_context.models import NAMESPACE_CODEBASE, Document, Issue, Options
from issue_context.similar_issues import format_similar_issues, select_similar


class Retriever:
    def __init__(self, backend: RetrievalBackend, embed_fn: EmbeddingFn | None = None):
        self._backend = backend
        self._embed_fn = embed_fn or embed_single

    @classmethod
    def from_settings(
        cls,
        index: str,
        kind: BackendKind | str | None = None,
        embed_fn: EmbeddingFn | None = None,
    ) -> "Retriever":
        return cls(create_backend(index, kind), embed_fn)

    @property
    def backend(self) -> RetrievalBackend:
        return self._backend

    def retrieve(
        self,
        query: str,
        embed_fn: EmbeddingFn | None = None,
        options: Options | None = None,
    ) -> list[Document]:
        """쿼리 텍스트로 관련 코드 Document를 점수 내림차순으로 검색한다.

        Args:
            query: 검색할 텍스트 (이슈 본문, 키워드 등).
            embed_fn: 쿼리 임베딩 함수. None이면 생성 시 받은 함수.
            options: top_k, branches 필터.
        """
        return self._backend.retrieve(query, embed_fn or self._embed_fn, options or Options())

    def retrieve_by_vector(self, vector: list[float], options: Options | None = None) -> list[Document]:
        """미리 계산된 임베딩으로 검색한다."""
        return self._backend.retrieve_by_vector(vector, options or Options())

    def similar_issues(
        self,
        vector: list[float],
        issue_number: int | str | None = None,
        options: Options | None = None,
    ) -> list[Issue]:
        """유사 이슈를 가까운 순으로 최대 similar_issue_count개 반환한다. 자기 자신은 제외."""
        count = (options or Options()).resolve_top_k(settings.similar_issue_count)
        exclude_id = str(issue_number) if issue_number is not None else None
        # 자기 자신이 결과에 포함될 수 있으므로 하나 더 가져온다
        limit = count + 1 if exclude_id is not None else count
        return select_similar(self._backend.retrieve_issues(vector, limit), exclude_id, count)

    def retrieve_issue(
        self,
        vector: list[float],
        issue_number: int | str | None = None,
        options: Options | None = None,
    ) -> str:
        """유사 이슈 목록을 Markdown 문자열로 반환한다.

        Raises:
            NotFoundError: 유사 이슈가 하나도 없을 때.
        """
        return format_similar_issues(self.similar_issues(vector, issue_number, options))

    def query_by_id(self, record_id: str, namespace: str = NAMESPACE_CODEBASE) -> Document | Issue:
        return self._backend.query_by_id(record_id, namespace)

    def close(self):
        self._backend.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
