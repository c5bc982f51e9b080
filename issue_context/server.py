"""FastAPI 서버 - 저장소 인덱싱 요청과 관련 코드/유사 이슈 검색 API."""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from issue_context.backend import create_backend
from issue_context.config import settings
from issue_context.embedding import embed_single
from issue_context.errors import (
    BackendConnectionError,
    IndexNotReadyError,
    NotFoundError,
    RetrievalError,
)
from issue_context.git_repo import AuthOptions
from issue_context.github_client import GitHubClient
from issue_context.indexer import index_repository
from issue_context.logging_config import setup_logging
from issue_context.models import Options, index_name
from issue_context.retriever import Retriever

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """서버 시작 시 로깅 설정을 초기화한다."""
    json_log = os.environ.get("RAG_LOG_FORMAT", "text") == "json"
    log_level = os.environ.get("RAG_LOG_LEVEL", "INFO")
    setup_logging(level=log_level, json_format=json_log)
    logger.info("Issue context retriever 시작 (backend=%s)", settings.backend)
    yield
    logger.info("Issue context retriever 종료")


app = FastAPI(
    title="Issue Context Retriever",
    description="이슈 응답에 붙일 관련 코드와 유사 이슈 검색",
    version="0.1.0",
    lifespan=lifespan,
)


class IndexRequest(BaseModel):
    owner: str
    repo: str
    branches: list[str] = Field(default_factory=list)
    include_issues: bool = True
    ignore: list[str] | None = None  # None이면 settings.index_ignore


class RetrieveRequest(BaseModel):
    owner: str
    repo: str
    query: str
    top_k: int | None = None
    branches: list[str] = Field(default_factory=list)


class SimilarIssuesRequest(BaseModel):
    owner: str
    repo: str
    query: str
    issue_number: int | None = None


@app.exception_handler(RetrievalError)
async def retrieval_error_handler(request: Request, exc: RetrievalError):
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, (BackendConnectionError, IndexNotReadyError)):
        status = 503
    else:
        status = 502
    logger.warning("검색 실패 (%s): %s", type(exc).__name__, exc.message)
    return JSONResponse(
        status_code=status,
        content={"error": type(exc).__name__, "detail": exc.message},
    )


@app.get("/health")
async def health():
    """헬스체크 엔드포인트."""
    return {
        "status": "ok",
        "backend": settings.backend,
        "embed_model": settings.embed_model,
    }


@app.post("/index")
async def index(body: IndexRequest, background_tasks: BackgroundTasks):
    """저장소 인덱싱을 백그라운드로 시작한다 (클론 + 임베딩은 오래 걸린다)."""
    if not body.owner or not body.repo:
        raise HTTPException(status_code=400, detail="Missing owner or repo")

    logger.info("인덱싱 요청: %s/%s branches=%s", body.owner, body.repo, body.branches or "all")
    background_tasks.add_task(
        run_indexing, body.owner, body.repo, body.branches, body.include_issues, body.ignore,
    )

    return {
        "status": "accepted",
        "owner": body.owner,
        "repo": body.repo,
        "index": index_name(body.owner, body.repo),
    }


@app.post("/retrieve")
def retrieve(body: RetrieveRequest):
    """관련 코드 Document를 점수 내림차순으로 반환한다."""
    options = Options(top_k=body.top_k, branches=body.branches)
    with Retriever.from_settings(index_name(body.owner, body.repo)) as retriever:
        docs = retriever.retrieve(body.query, options=options)
    return {"documents": [asdict(doc) for doc in docs]}


@app.post("/similar-issues")
def similar_issues(body: SimilarIssuesRequest):
    """유사 이슈 목록을 Markdown으로 반환한다."""
    with Retriever.from_settings(index_name(body.owner, body.repo)) as retriever:
        markdown = retriever.retrieve_issue(embed_single(body.query), body.issue_number)
    return {"markdown": markdown}


def run_indexing(
    owner: str,
    repo: str,
    branches: list[str],
    include_issues: bool = True,
    ignore: list[str] | None = None,
):
    """저장소 코드와 이슈를 인덱싱한다.

    BackgroundTasks에서 호출되는 동기 함수.
    """
    logger.info("인덱싱 시작: %s/%s", owner, repo)
    auth = AuthOptions(username=settings.github_username, token=settings.github_token)

    try:
        with create_backend(index_name(owner, repo)) as backend:
            if include_issues:
                with GitHubClient() as github:
                    report = index_repository(
                        owner, repo, backend, embed_single,
                        auth=auth, branches=branches, issue_source=github, ignore=ignore,
                    )
            else:
                report = index_repository(
                    owner, repo, backend, embed_single, auth=auth, branches=branches, ignore=ignore,
                )

        logger.info(
            "인덱싱 완료: %s/%s documents=%d, issues=%d",
            owner, repo, report.documents, report.issues,
        )

    except Exception:
        logger.exception("인덱싱 실패: %s/%s", owner, repo)
