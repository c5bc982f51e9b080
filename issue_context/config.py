from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Backend: "vector" (PostgreSQL + pgvector) | "graph" (Neo4j hybrid)
    backend: str = "vector"

    # Embedding (OpenAI 호환 /embeddings API)
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_api_key: str = ""
    embed_model: str = "text-embedding-3-small"
    embed_dim: int = 1536

    # PostgreSQL
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "retriever"
    db_password: str = "retriever"
    db_name: str = "issue_context"

    # Neo4j
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = ""
    neo4j_database: str | None = None
    neo4j_vector_index: str = "vector"
    neo4j_fulltext_index: str = "keyword"
    neo4j_issue_vector_index: str = "issue_vector"
    neo4j_document_label: str = "Chunk"
    neo4j_issue_label: str = "Issue"
    neo4j_id_property: str = "source"
    neo4j_content_property: str = "text"
    graph_bind_fulltext_query: bool = True
    # 저장소별로 인덱스/라벨 이름을 나눈다. False면 위 이름을 모든 저장소가 공유한다.
    neo4j_scope_by_index: bool = True

    # GitHub
    github_host: str = "github.com"
    github_api_url: str = "https://api.github.com"
    github_username: str = ""
    github_token: str = ""

    # Indexing
    max_file_tokens: int = 8192
    # 인덱싱에서 뺄 파일 glob 패턴 (경로 또는 파일명). 예: RAG_INDEX_IGNORE='["*.png", "vendor/*"]'
    index_ignore: list[str] = []
    tokenizer_encoding: str = "cl100k_base"
    index_concurrency: int = 4
    upsert_batch_size: int = 32
    index_poll_interval: float = 5.0
    index_max_wait: float = 280.0

    # Retrieval
    vector_top_k: int = 3
    hybrid_top_k: int = 5
    similar_issue_count: int = 3

    model_config = {"env_prefix": "RAG_"}

    @property
    def database_url(self) -> str:
        return (
            f"host={self.db_host} port={self.db_port} "
            f"dbname={self.db_name} user={self.db_user} password={self.db_password}"
        )


settings = Settings()
