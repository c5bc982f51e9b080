"""검색 백엔드 계약과 선택.

백엔드는 설정값(BackendKind)으로 생성 시점에 한 번만 고른다.
"""

from abc import ABC, abstractmethod
from enum import Enum

from issue_context.config import Settings, settings
from issue_context.embedding import EmbeddingFn
from issue_context.models import NAMESPACE_CODEBASE, Document, Issue, Options


class BackendKind(str, Enum):
    VECTOR = "vector"
    GRAPH = "graph"


class RetrievalBackend(ABC):
    """벡터 전용(pgvector) / 하이브리드 그래프(Neo4j) 백엔드의 공통 계약."""

    kind: BackendKind
    default_top_k: int

    # ── 인덱스 수명주기 ───────────────────────────────────────

    @property
    @abstractmethod
    def index_name(self) -> str: ...

    @abstractmethod
    def ensure_index(self) -> None:
        """인덱스가 없으면 만들고 Ready가 될 때까지 기다린다."""

    @abstractmethod
    def drop_index(self, confirm: str) -> None:
        """인덱스 전체를 삭제한다. confirm은 인덱스 이름과 같아야 한다."""

    # ── 적재 ──────────────────────────────────────────────────

    @abstractmethod
    def upsert_documents(self, docs: list[Document], vectors: list[list[float]]) -> int: ...

    @abstractmethod
    def upsert_issues(self, issues: list[Issue], vectors: list[list[float]]) -> int: ...

    @abstractmethod
    def delete_records(self, ids: list[str], namespace: str = NAMESPACE_CODEBASE) -> int: ...

    # ── 검색 ──────────────────────────────────────────────────

    @abstractmethod
    def retrieve(self, query: str, embed_fn: EmbeddingFn, options: Options) -> list[Document]: ...

    @abstractmethod
    def retrieve_by_vector(self, vector: list[float], options: Options) -> list[Document]: ...

    @abstractmethod
    def retrieve_issues(self, vector: list[float], limit: int) -> list[Issue]:
        """issues 네임스페이스에서 가까운 순으로 최대 limit개 이슈를 반환한다."""

    @abstractmethod
    def query_by_id(self, record_id: str, namespace: str = NAMESPACE_CODEBASE) -> Document | Issue: ...

    @abstractmethod
    def close(self) -> None: ...

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _vector_backend(cfg: Settings, index: str) -> RetrievalBackend:
    from issue_context.vectorstore import VectorStore

    return VectorStore(index_name=index, conninfo=cfg.database_url, cfg=cfg)


def _graph_backend(cfg: Settings, index: str) -> RetrievalBackend:
    from issue_context.graphstore import GraphStore

    return GraphStore.from_settings(cfg, index)


BACKEND_FACTORIES = {
    BackendKind.VECTOR: _vector_backend,
    BackendKind.GRAPH: _graph_backend,
}


def create_backend(
    index: str,
    kind: BackendKind | str | None = None,
    cfg: Settings | None = None,
) -> RetrievalBackend:
    """설정된 종류의 백엔드를 생성한다.

    Args:
        index: 저장소 인덱스 이름. 벡터 백엔드는 테이블 이름, 그래프 백엔드는 인덱스/라벨 접두사.
        kind: 백엔드 종류. None이면 settings.backend.
    """
    cfg = cfg or settings
    kind = BackendKind(kind or cfg.backend)
    return BACKEND_FACTORIES[kind](cfg, index)
