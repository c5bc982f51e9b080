"""pgvector 기반 벡터 저장소 - 네임스페이스별 임베딩 upsert 및 최근접 이웃 검색.

인덱스 하나가 테이블 하나이고, "codebase"/"issues" 네임스페이스는 컬럼으로 나눈다.
검색 결과는 메타데이터만으로 복원되므로 별도의 본문 조회가 필요 없다.
"""

import hashlib
import logging

import psycopg
from pgvector.psycopg import register_vector
from psycopg import sql
from psycopg.types.json import Jsonb

from issue_context.backend import BackendKind, RetrievalBackend
from issue_context.config import Settings, settings
from issue_context.embedding import EmbeddingFn
from issue_context.errors import (
    BackendConnectionError,
    BackendError,
    IndexNotReadyError,
    NotFoundError,
)
from issue_context.models import (
    NAMESPACE_CODEBASE,
    NAMESPACE_ISSUES,
    Document,
    Issue,
    Options,
)
from issue_context.readiness import IndexStatus, wait_until_ready

logger = logging.getLogger(__name__)

EMBED_DIM = 1536
# PostgreSQL은 63바이트를 넘는 식별자를 조용히 잘라낸다
PG_MAX_IDENTIFIER = 63
HNSW_SUFFIX = "_embedding_hnsw"


def pg_identifier(name: str, suffix: str = "") -> str:
    """name + suffix가 63바이트를 넘으면 앞부분 + 해시로 줄인 이름을 반환한다.

    잘린 이름끼리 겹치지 않도록 원래 이름의 sha1 앞 8자리를 붙인다.
    """
    full = name + suffix
    if len(full.encode("utf-8")) <= PG_MAX_IDENTIFIER:
        return full
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
    keep = PG_MAX_IDENTIFIER - len(suffix.encode("utf-8")) - len(digest) - 1
    head = name.encode("utf-8")[:keep].decode("utf-8", errors="ignore")
    return f"{head}_{digest}{suffix}"


class VectorStore(RetrievalBackend):
    kind = BackendKind.VECTOR

    def __init__(
        self,
        index_name: str,
        conninfo: str | None = None,
        cfg: Settings | None = None,
        clock=None,
    ):
        self._cfg = cfg or settings
        self._index_name = index_name
        self._conninfo = conninfo or self._cfg.database_url
        self._clock = clock
        self._conn: psycopg.Connection | None = None
        self._ready = False
        self.default_top_k = self._cfg.vector_top_k

    @property
    def index_name(self) -> str:
        return self._index_name

    @property
    def _table_name(self) -> str:
        return pg_identifier(self._index_name)

    @property
    def _table(self) -> sql.Identifier:
        return sql.Identifier(self._table_name)

    @property
    def _hnsw_index(self) -> str:
        return pg_identifier(self._index_name, HNSW_SUFFIX)

    def _connect(self) -> psycopg.Connection:
        # CREATE INDEX CONCURRENTLY는 트랜잭션 밖에서만 실행된다
        if self._conn is None or self._conn.closed:
            try:
                conn = psycopg.connect(self._conninfo, autocommit=True)
            except psycopg.OperationalError as e:
                raise BackendConnectionError(f"PostgreSQL 연결 실패: {e}") from e
            conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
            register_vector(conn)
            self._conn = conn
        return self._conn

    def _execute(self, query, params=None):
        try:
            return self._connect().execute(query, params)
        except psycopg.OperationalError as e:
            raise BackendConnectionError(f"PostgreSQL 연결 오류: {e}") from e
        except psycopg.Error as e:
            raise BackendError(f"PostgreSQL 쿼리 실패: {e}", details={"index": self._index_name}) from e

    # ── 인덱스 수명주기 ───────────────────────────────────────

    def describe_index(self) -> IndexStatus:
        """테이블과 HNSW 인덱스 상태를 조회한다."""
        row = self._execute(
            """
            SELECT c.relname IS NOT NULL AS table_exists,
                   COALESCE(i.indisready AND i.indisvalid, false) AS index_ready
            FROM (SELECT 1) AS one
            LEFT JOIN pg_class c ON c.relname = %s AND c.relkind = 'r'
            LEFT JOIN pg_class ic ON ic.relname = %s
            LEFT JOIN pg_index i ON i.indexrelid = ic.oid
            """,
            (self._table_name, self._hnsw_index),
        ).fetchone()
        exists, ready = bool(row[0]), bool(row[1])
        if not exists:
            return IndexStatus(exists=False, ready=False, state="Absent")
        return IndexStatus(exists=True, ready=ready, state="Ready" if ready else "Creating")

    def ensure_index(self) -> None:
        """인덱스가 없으면 생성(dimension 1536, cosine)하고 Ready까지 기다린다."""
        if self._ready:
            return
        status = self.describe_index()
        if not status.exists:
            self._create_index()
        self._wait_until_ready(creating=True)

    def _create_index(self) -> None:
        logger.info('Index "%s" 생성 (dim=%d, metric=cosine)', self._index_name, EMBED_DIM)
        self._execute(
            sql.SQL(
                """
                CREATE TABLE IF NOT EXISTS {table} (
                    namespace  TEXT NOT NULL,
                    id         TEXT NOT NULL,
                    embedding  vector({dim}) NOT NULL,
                    metadata   JSONB NOT NULL,
                    created_at TIMESTAMPTZ DEFAULT now(),
                    PRIMARY KEY (namespace, id)
                )
                """
            ).format(table=self._table, dim=sql.Literal(EMBED_DIM))
        )
        self._execute(
            sql.SQL(
                "CREATE INDEX CONCURRENTLY IF NOT EXISTS {index} "
                "ON {table} USING hnsw (embedding vector_cosine_ops)"
            ).format(index=sql.Identifier(self._hnsw_index), table=self._table)
        )

    def _wait_until_ready(self, creating: bool = False) -> None:
        """인덱스가 Ready가 될 때까지 기다린다.

        creating=False(읽기/쓰기 경로)면 없는 인덱스를 기다리지 않고 바로 NotFoundError를 던진다.
        """
        if self._ready:
            return
        outcome = wait_until_ready(
            self.describe_index,
            name=self._index_name,
            interval=self._cfg.index_poll_interval,
            timeout=self._cfg.index_max_wait,
            clock=self._clock,
            stop_if_absent=not creating,
        )
        if not outcome.ready:
            if outcome.absent:
                raise NotFoundError(f'Index "{self._index_name}" does not exist')
            raise IndexNotReadyError(self._index_name, outcome.elapsed, outcome.state)
        self._ready = True

    def drop_index(self, confirm: str) -> None:
        if confirm != self._index_name:
            raise ValueError(
                f'drop_index requires confirm="{self._index_name}", got "{confirm}"'
            )
        self._execute(sql.SQL("DROP TABLE IF EXISTS {table}").format(table=self._table))
        self._ready = False
        logger.warning('Index "%s" 삭제됨', self._index_name)

    # ── 적재 ──────────────────────────────────────────────────

    def _upsert(self, namespace: str, rows: list[tuple[str, list[float], dict]]) -> int:
        self._wait_until_ready()
        query = sql.SQL(
            """
            INSERT INTO {table} (namespace, id, embedding, metadata)
            VALUES (%s, %s, %s::vector, %s)
            ON CONFLICT (namespace, id)
            DO UPDATE SET embedding = EXCLUDED.embedding, metadata = EXCLUDED.metadata
            """
        ).format(table=self._table)
        conn = self._connect()
        try:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.executemany(
                        query,
                        [
                            (namespace, record_id, str(vector), Jsonb(metadata))
                            for record_id, vector, metadata in rows
                        ],
                    )
        except psycopg.Error as e:
            raise BackendError(f"upsert 실패: {e}", details={"namespace": namespace}) from e

        logger.info(
            "Successfully upserted %d vector(s) into %s", len(rows), namespace,
            extra={"index": self._index_name, "namespace": namespace},
        )
        return len(rows)

    def upsert_documents(self, docs: list[Document], vectors: list[list[float]]) -> int:
        """Document와 벡터를 메타데이터 {id, content, branch, url, score}와 함께 저장한다."""
        rows = [(doc.id, vec, doc.to_metadata()) for doc, vec in zip(docs, vectors, strict=True)]
        return self._upsert(NAMESPACE_CODEBASE, rows)

    def upsert_issues(self, issues: list[Issue], vectors: list[list[float]]) -> int:
        """Issue와 벡터를 메타데이터 {id, content, title, url, state}와 함께 저장한다."""
        rows = [(issue.id, vec, issue.to_metadata()) for issue, vec in zip(issues, vectors, strict=True)]
        return self._upsert(NAMESPACE_ISSUES, rows)

    def delete_record(self, record_id: str, namespace: str = NAMESPACE_CODEBASE) -> int:
        return self.delete_records([record_id], namespace)

    def delete_records(self, ids: list[str], namespace: str = NAMESPACE_CODEBASE) -> int:
        self._wait_until_ready()
        rows = self._execute(
            sql.SQL("DELETE FROM {table} WHERE namespace = %s AND id = ANY(%s) RETURNING id").format(
                table=self._table
            ),
            (namespace, list(ids)),
        ).fetchall()
        logger.info("Deleted %d vector(s) from %s", len(rows), namespace)
        return len(rows)

    # ── 검색 ──────────────────────────────────────────────────

    def _nearest(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        branches: list[str] | None = None,
    ) -> list[dict]:
        """코사인 거리 기준 최근접 이웃의 메타데이터를 가까운 순으로 반환한다."""
        self._wait_until_ready()
        where = sql.SQL("namespace = %s")
        params: list = [namespace]
        if branches:
            where = sql.SQL("namespace = %s AND metadata->>'branch' = ANY(%s)")
            params.append(list(branches))

        query = sql.SQL(
            """
            SELECT metadata
            FROM {table}
            WHERE {where}
            ORDER BY embedding <=> %s::vector
            LIMIT %s
            """
        ).format(table=self._table, where=where)
        rows = self._execute(query, (*params, str(vector), top_k)).fetchall()
        return [row[0] for row in rows]

    def retrieve(self, query: str, embed_fn: EmbeddingFn, options: Options) -> list[Document]:
        return self.retrieve_by_vector(embed_fn(query), options)

    def retrieve_by_vector(self, vector: list[float], options: Options) -> list[Document]:
        """codebase 네임스페이스에서 가장 가까운 Document를 검색한다.

        NOTE: score는 전달하지 않는다 (항상 0). 순서만 유사도 순이다.
        """
        top_k = options.resolve_top_k(self.default_top_k)
        matches = self._nearest(NAMESPACE_CODEBASE, vector, top_k, options.branches)
        logger.debug("codebase 검색 결과 %d건 (top_k=%d)", len(matches), top_k)
        return [Document.from_metadata(metadata) for metadata in matches]

    def retrieve_issues(self, vector: list[float], limit: int) -> list[Issue]:
        matches = self._nearest(NAMESPACE_ISSUES, vector, limit)
        return [Issue.from_metadata(metadata) for metadata in matches]

    def query_by_id(self, record_id: str, namespace: str = NAMESPACE_CODEBASE) -> Document | Issue:
        """id로 단일 레코드를 조회한다. 디버깅/검증용."""
        self._wait_until_ready()
        row = self._execute(
            sql.SQL("SELECT metadata FROM {table} WHERE namespace = %s AND id = %s").format(
                table=self._table
            ),
            (namespace, record_id),
        ).fetchone()
        if row is None:
            raise NotFoundError(
                f'No record "{record_id}" in namespace "{namespace}"',
                details={"index": self._index_name, "namespace": namespace},
            )
        if namespace == NAMESPACE_ISSUES:
            return Issue.from_metadata(row[0])
        return Document.from_metadata(row[0])

    def count(self, namespace: str = NAMESPACE_CODEBASE) -> int:
        """네임스페이스에 저장된 레코드 수를 반환한다."""
        self._wait_until_ready()
        row = self._execute(
            sql.SQL("SELECT COUNT(*) FROM {table} WHERE namespace = %s").format(table=self._table),
            (namespace,),
        ).fetchone()
        return row[0]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
