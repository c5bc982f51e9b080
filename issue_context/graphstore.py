"""Neo4j 기반 하이브리드 검색 - 벡터 인덱스 + 전문(full-text) 인덱스 점수 융합.

한 번의 Cypher 호출로 두 스캔 결과를 함께 받아오고, 정규화/융합은
`issue_context.fusion`의 순수 함수로 처리한다.
"""

import logging
from string import Template

from neo4j import READ_ACCESS, WRITE_ACCESS, Driver, GraphDatabase
from neo4j.exceptions import (
    AuthError,
    ClientError,
    CypherSyntaxError,
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
)

from issue_context.backend import BackendKind, RetrievalBackend
from issue_context.config import Settings
from issue_context.embedding import EmbeddingFn
from issue_context.errors import (
    BackendConnectionError,
    BackendError,
    IndexNotReadyError,
    NotFoundError,
    QuerySyntaxError,
)
from issue_context.fusion import ScoredNode, hybrid_rank, split_by_modality
from issue_context.models import NAMESPACE_ISSUES, Document, Issue, Options
from issue_context.readiness import IndexStatus, wait_until_ready

logger = logging.getLogger(__name__)

EMBED_DIM = 1536
# 브랜치 필터는 융합 후에 적용하므로 스캔마다 더 많이 가져온다
BRANCH_FILTER_OVERFETCH = 4

# 인라인 모드에서 전문 검색 문자열에 적용하는 이스케이프 표.
# 역슬래시를 먼저 처리해야 뒤에서 추가한 역슬래시가 다시 이스케이프되지 않는다.
FULLTEXT_ESCAPES = (
    ("\\", "\\\\"),
    ('"', '\\"'),
    ("'", "\\'"),
    ("\n", "\\n"),
    ("\r", "\\r"),
    ("$", "\\$"),
    (":", "\\:"),
    ("/", "\\/"),
    ("[", "\\["),
    ("]", "\\]"),
    ("(", "\\("),
    (")", "\\)"),
    ("{", "\\{"),
    ("}", "\\}"),
    ("~", "\\~"),
    ("^", "\\^"),
)

LUCENE_SPECIAL_CHARS = frozenset('\\+-!(){}[]^"~*?:/&|')
LUCENE_OPERATORS = frozenset({"AND", "OR", "NOT"})

HYBRID_SEARCH_CYPHER = """
CALL {
    CALL db.index.vector.queryNodes($vector_index, $k, $embedding)
    YIELD node, score
    RETURN node, score, 'vector' AS modality
    UNION ALL
    CALL db.index.fulltext.queryNodes($fulltext_index, $query, {limit: $k})
    YIELD node, score
    RETURN node, score, 'fulltext' AS modality
}
RETURN elementId(node) AS node_key,
       node[$id_property] AS id,
       node[$content_property] AS text,
       node.branch AS branch,
       node.url AS url,
       score,
       modality
"""

# 전문 검색 문자열을 파라미터로 넘길 수 없는 환경용
INLINE_HYBRID_SEARCH_TEMPLATE = Template("""
CALL {
    CALL db.index.vector.queryNodes("${vector_index}", ${k}, ${embedding})
    YIELD node, score
    RETURN node, score, 'vector' AS modality
    UNION ALL
    CALL db.index.fulltext.queryNodes("${fulltext_index}", "${query}", {limit: ${k}})
    YIELD node, score
    RETURN node, score, 'fulltext' AS modality
}
RETURN elementId(node) AS node_key,
       node.${id_property} AS id,
       node.${content_property} AS text,
       node.branch AS branch,
       node.url AS url,
       score,
       modality
""")

VECTOR_SEARCH_CYPHER = """
CALL db.index.vector.queryNodes($vector_index, $k, $embedding)
YIELD node, score
RETURN elementId(node) AS node_key,
       node[$id_property] AS id,
       node[$content_property] AS text,
       node.branch AS branch,
       node.url AS url,
       score
"""

ISSUE_SEARCH_CYPHER = """
CALL db.index.vector.queryNodes($issue_index, $k, $embedding)
YIELD node, score
RETURN node.id AS id, node.url AS url, node.content AS content,
       node.title AS title, node.state AS state, score
ORDER BY score DESC
"""

INDEX_STATUS_CYPHER = """
SHOW INDEXES YIELD name, state
WHERE name IN $names
RETURN name, state
"""


def sanitize_query(query: str) -> str:
    """Cypher 문자열 리터럴에 넣을 전문 검색어를 이스케이프한다."""
    for old, new in FULLTEXT_ESCAPES:
        query = query.replace(old, new)
    return query


def escape_lucene(query: str) -> str:
    """파라미터로 넘길 전문 검색어에서 Lucene 연산자 의미를 없앤다.

    줄바꿈 등 공백은 한 칸으로 합치고, AND/OR/NOT은 소문자로 바꿔 일반 단어로 만든다.
    """
    words = []
    for word in query.split():
        if word in LUCENE_OPERATORS:
            word = word.lower()
        words.append("".join("\\" + c if c in LUCENE_SPECIAL_CHARS else c for c in word))
    return " ".join(words)


def scoped_name(name: str, index: str) -> str:
    """저장소 인덱스별 Neo4j 인덱스/라벨 이름. index가 비어 있으면 name 그대로."""
    return f"{index}-{name}" if index else name


def quote_identifier(name: str) -> str:
    """라벨/인덱스/프로퍼티 이름을 백틱으로 감싼다."""
    return "`" + name.replace("`", "``") + "`"


def vector_literal(vector: list[float]) -> str:
    return "[" + ", ".join(repr(float(x)) for x in vector) + "]"


def _is_lucene_parse_error(error: ClientError) -> bool:
    message = (error.message or "").lower()
    return "parseexception" in message or "failed to parse" in message


class GraphStore(RetrievalBackend):
    kind = BackendKind.GRAPH

    def __init__(
        self,
        driver: Driver,
        *,
        index: str = "",
        database: str | None = None,
        vector_index: str = "vector",
        fulltext_index: str = "keyword",
        issue_vector_index: str = "issue_vector",
        document_label: str = "Chunk",
        issue_label: str = "Issue",
        id_property: str = "source",
        content_property: str = "text",
        bind_fulltext_query: bool = True,
        default_top_k: int = 5,
        poll_interval: float = 5.0,
        max_wait: float = 280.0,
        clock=None,
    ):
        self._driver = driver
        self._index = index
        self._database = database
        # 저장소마다 벡터/전문 인덱스와 라벨을 따로 둔다 (다른 저장소 노드와 섞이지 않게)
        self._vector_index = scoped_name(vector_index, index)
        self._fulltext_index = scoped_name(fulltext_index, index)
        self._issue_vector_index = scoped_name(issue_vector_index, index)
        self._document_label = scoped_name(document_label, index)
        self._issue_label = scoped_name(issue_label, index)
        self._id_property = id_property
        self._content_property = content_property
        self._bind_fulltext_query = bind_fulltext_query
        self._poll_interval = poll_interval
        self._max_wait = max_wait
        self._clock = clock
        self.default_top_k = default_top_k

    @classmethod
    def from_settings(cls, cfg: Settings, index: str = "") -> "GraphStore":
        """설정으로 GraphStore를 만든다.

        neo4j_scope_by_index가 켜져 있으면 index(예: "acme-widgets")로 인덱스/라벨 이름을 나눈다.
        끄면 설정된 이름을 그대로 써서 기존 단일 인덱스를 공유한다.
        """
        driver = GraphDatabase.driver(cfg.neo4j_uri, auth=(cfg.neo4j_user, cfg.neo4j_password))
        return cls(
            driver,
            index=index if cfg.neo4j_scope_by_index else "",
            database=cfg.neo4j_database,
            vector_index=cfg.neo4j_vector_index,
            fulltext_index=cfg.neo4j_fulltext_index,
            issue_vector_index=cfg.neo4j_issue_vector_index,
            document_label=cfg.neo4j_document_label,
            issue_label=cfg.neo4j_issue_label,
            id_property=cfg.neo4j_id_property,
            content_property=cfg.neo4j_content_property,
            bind_fulltext_query=cfg.graph_bind_fulltext_query,
            default_top_k=cfg.hybrid_top_k,
            poll_interval=cfg.index_poll_interval,
            max_wait=cfg.index_max_wait,
        )

    @property
    def index_name(self) -> str:
        return self._index or self._vector_index

    def _run(self, query: str, params: dict | None = None, write: bool = False) -> list:
        mode = WRITE_ACCESS if write else READ_ACCESS
        try:
            with self._driver.session(database=self._database, default_access_mode=mode) as session:
                return list(session.run(query, params or {}))
        except (AuthError, ServiceUnavailable, SessionExpired) as e:
            raise BackendConnectionError(f"Neo4j 연결 실패: {e}") from e
        except CypherSyntaxError as e:
            raise QuerySyntaxError(f"Cypher 문법 오류: {e.message}", details={"code": e.code}) from e
        except ClientError as e:
            if _is_lucene_parse_error(e):
                raise QuerySyntaxError(f"전문 검색어 파싱 실패: {e.message}", details={"code": e.code}) from e
            raise BackendError(f"Neo4j 쿼리 실패: {e.message}", details={"code": e.code}) from e
        except (Neo4jError, DriverError) as e:
            raise BackendError(f"Neo4j 오류: {e}") from e

    def test_connection(self) -> bool:
        """노드 하나를 조회해 연결/인증을 확인한다."""
        records = self._run("MATCH (n) RETURN n LIMIT 1")
        logger.info("Neo4j 연결 확인 (노드 %d개 조회)", len(records))
        return True

    # ── 인덱스 수명주기 ───────────────────────────────────────

    @property
    def _index_names(self) -> list[str]:
        return [self._vector_index, self._fulltext_index, self._issue_vector_index]

    def describe_index(self) -> IndexStatus:
        rows = self._run(INDEX_STATUS_CYPHER, {"names": self._index_names})
        states = {row["name"]: row["state"] for row in rows}
        if any(state == "FAILED" for state in states.values()):
            raise BackendError("Neo4j 인덱스 생성 실패", details={"states": states})
        if len(states) < len(self._index_names):
            return IndexStatus(exists=False, ready=False, state="Absent")
        ready = all(state == "ONLINE" for state in states.values())
        return IndexStatus(exists=True, ready=ready, state="Ready" if ready else "Creating")

    def ensure_index(self) -> None:
        """벡터 인덱스 2개(dimension 1536, cosine)와 전문 인덱스를 만들고 ONLINE까지 기다린다."""
        if not self.describe_index().exists:
            self._create_indexes()

        outcome = wait_until_ready(
            self.describe_index,
            name=self._vector_index,
            interval=self._poll_interval,
            timeout=self._max_wait,
            clock=self._clock,
        )
        if not outcome.ready:
            raise IndexNotReadyError(self._vector_index, outcome.elapsed, outcome.state)

    def _create_indexes(self) -> None:
        vector_options = (
            "OPTIONS {indexConfig: {`vector.dimensions`: %d, "
            "`vector.similarity_function`: 'cosine'}}" % EMBED_DIM
        )
        statements = [
            f"CREATE VECTOR INDEX {quote_identifier(self._vector_index)} IF NOT EXISTS "
            f"FOR (n:{quote_identifier(self._document_label)}) ON (n.embedding) {vector_options}",
            f"CREATE VECTOR INDEX {quote_identifier(self._issue_vector_index)} IF NOT EXISTS "
            f"FOR (n:{quote_identifier(self._issue_label)}) ON (n.embedding) {vector_options}",
            f"CREATE FULLTEXT INDEX {quote_identifier(self._fulltext_index)} IF NOT EXISTS "
            f"FOR (n:{quote_identifier(self._document_label)}) "
            f"ON EACH [n.{quote_identifier(self._content_property)}]",
        ]
        for statement in statements:
            self._run(statement, write=True)
        logger.info("Neo4j 인덱스 생성 요청: %s", ", ".join(self._index_names))

    def drop_index(self, confirm: str) -> None:
        if confirm != self.index_name:
            raise ValueError(f'drop_index requires confirm="{self.index_name}", got "{confirm}"')
        for name in self._index_names:
            self._run(f"DROP INDEX {quote_identifier(name)} IF EXISTS", write=True)
        for label in (self._document_label, self._issue_label):
            self._run(f"MATCH (n:{quote_identifier(label)}) DETACH DELETE n", write=True)
        logger.warning("Neo4j 인덱스와 노드 삭제됨: %s", ", ".join(self._index_names))

    # ── 적재 ──────────────────────────────────────────────────

    def upsert_documents(self, docs: list[Document], vectors: list[list[float]]) -> int:
        query = (
            "UNWIND $rows AS row "
            f"MERGE (n:{quote_identifier(self._document_label)} "
            f"{{{quote_identifier(self._id_property)}: row.id}}) "
            f"SET n.{quote_identifier(self._content_property)} = row.content, "
            "n.branch = row.branch, n.url = row.url, n.score = row.score, "
            "n.embedding = row.embedding"
        )
        rows = [
            {**doc.to_metadata(), "embedding": list(vec)}
            for doc, vec in zip(docs, vectors, strict=True)
        ]
        self._run(query, {"rows": rows}, write=True)
        logger.info("Successfully upserted %d node(s) into %s", len(rows), self._document_label)
        return len(rows)

    def upsert_issues(self, issues: list[Issue], vectors: list[list[float]]) -> int:
        query = (
            "UNWIND $rows AS row "
            f"MERGE (n:{quote_identifier(self._issue_label)} {{id: row.id}}) "
            "SET n.content = row.content, n.title = row.title, n.url = row.url, "
            "n.state = row.state, n.embedding = row.embedding"
        )
        rows = [
            {**issue.to_metadata(), "embedding": list(vec)}
            for issue, vec in zip(issues, vectors, strict=True)
        ]
        self._run(query, {"rows": rows}, write=True)
        logger.info("Successfully upserted %d node(s) into %s", len(rows), self._issue_label)
        return len(rows)

    def _label_and_key(self, namespace: str) -> tuple[str, str]:
        if namespace == NAMESPACE_ISSUES:
            return self._issue_label, "id"
        return self._document_label, self._id_property

    def delete_records(self, ids: list[str], namespace: str = "codebase") -> int:
        label, key = self._label_and_key(namespace)
        rows = self._run(
            f"MATCH (n:{quote_identifier(label)}) WHERE n[$key] IN $ids "
            "DETACH DELETE n RETURN count(*) AS deleted",
            {"key": key, "ids": list(ids)},
            write=True,
        )
        return rows[0]["deleted"] if rows else 0

    # ── 검색 ──────────────────────────────────────────────────

    def hybrid_search(self, embedding: list[float], query: str, k: int) -> tuple[str, dict]:
        """하이브리드 검색 Cypher와 파라미터를 만든다."""
        if self._bind_fulltext_query:
            params = {
                "vector_index": self._vector_index,
                "fulltext_index": self._fulltext_index,
                "k": k,
                "embedding": list(embedding),
                "query": escape_lucene(query),
                "id_property": self._id_property,
                "content_property": self._content_property,
            }
            return HYBRID_SEARCH_CYPHER, params

        cypher = INLINE_HYBRID_SEARCH_TEMPLATE.substitute(
            vector_index=sanitize_query(self._vector_index),
            fulltext_index=sanitize_query(self._fulltext_index),
            k=int(k),
            embedding=vector_literal(embedding),
            query=sanitize_query(query),
            id_property=quote_identifier(self._id_property),
            content_property=quote_identifier(self._content_property),
        )
        return cypher, {}

    def retrieve(self, query: str, embed_fn: EmbeddingFn, options: Options) -> list[Document]:
        """질의 텍스트를 임베딩한 뒤 벡터+전문 하이브리드 검색을 수행한다.

        Raises:
            NotFoundError: 일치하는 노드가 하나도 없을 때.
        """
        if not query.strip():
            raise ValueError("query must not be empty")
        embedding = embed_fn(query)
        top_k = options.resolve_top_k(self.default_top_k)
        scan_k = top_k * BRANCH_FILTER_OVERFETCH if options.branches else top_k

        cypher, params = self.hybrid_search(embedding, query, scan_k)
        logger.debug("hybrid cypher: %s", cypher)
        rows = self._run(cypher, params)
        if not rows:
            raise NotFoundError("No results found", details={"query": query[:100]})

        vector_hits, fulltext_hits = split_by_modality(
            (row["modality"], self._to_node(row)) for row in rows
        )
        ranked = hybrid_rank(vector_hits, fulltext_hits, top_k, keep=self._branch_filter(options))
        return self._to_documents(ranked, query)

    def retrieve_by_vector(self, vector: list[float], options: Options) -> list[Document]:
        """벡터 스캔만 수행한다. 점수는 스캔 최고점으로 정규화된다."""
        top_k = options.resolve_top_k(self.default_top_k)
        scan_k = top_k * BRANCH_FILTER_OVERFETCH if options.branches else top_k
        rows = self._run(
            VECTOR_SEARCH_CYPHER,
            {
                "vector_index": self._vector_index,
                "k": scan_k,
                "embedding": list(vector),
                "id_property": self._id_property,
                "content_property": self._content_property,
            },
        )
        if not rows:
            raise NotFoundError("No results found")
        ranked = hybrid_rank([self._to_node(row) for row in rows], [], top_k, keep=self._branch_filter(options))
        return self._to_documents(ranked)

    def retrieve_issues(self, vector: list[float], limit: int) -> list[Issue]:
        rows = self._run(
            ISSUE_SEARCH_CYPHER,
            {"issue_index": self._issue_vector_index, "k": limit, "embedding": list(vector)},
        )
        return [
            Issue(
                id=row["id"] or "",
                url=row["url"] or "",
                content=row["content"] or "",
                title=row["title"] or "",
                state=row["state"] or "",
            )
            for row in rows
        ]

    def query_by_id(self, record_id: str, namespace: str = "codebase") -> Document | Issue:
        label, key = self._label_and_key(namespace)
        rows = self._run(
            f"MATCH (n:{quote_identifier(label)}) WHERE n[$key] = $id RETURN n LIMIT 1",
            {"key": key, "id": record_id},
        )
        if not rows:
            raise NotFoundError(f'No record "{record_id}" in namespace "{namespace}"')
        props = dict(rows[0]["n"])
        if namespace == NAMESPACE_ISSUES:
            return Issue.from_metadata(props)
        return Document(
            id=props.get(self._id_property, ""),
            content=props.get(self._content_property, ""),
            branch=props.get("branch", ""),
            url=props.get("url", ""),
        )

    @staticmethod
    def _to_node(row) -> ScoredNode:
        return ScoredNode(
            key=row["node_key"],
            id=row["id"] or "",
            text=row["text"] or "",
            score=float(row["score"]),
            branch=row["branch"] or "",
            url=row["url"] or "",
        )

    @staticmethod
    def _branch_filter(options: Options):
        if not options.branches:
            return None
        allowed = set(options.branches)
        return lambda node: node.branch in allowed

    @staticmethod
    def _to_documents(ranked: list[ScoredNode], query: str = "") -> list[Document]:
        if not ranked:
            raise NotFoundError("No results found after branch filter", details={"query": query[:100]})
        return [
            Document(id=node.id, content=node.text, branch=node.branch, url=node.url, score=node.score)
            for node in ranked
        ]

    def close(self) -> None:
        self._driver.close()
