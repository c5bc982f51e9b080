"""저장소 인덱싱 - 브랜치별 파일을 Document로 변환하고 코드/이슈를 백엔드에 적재한다."""

import logging
from dataclasses import dataclass
from typing import Protocol

import tiktoken

from issue_context.backend import RetrievalBackend
from issue_context.config import settings
from issue_context.embedding import EmbeddingFn
from issue_context.errors import IndexingError
from issue_context.git_repo import AuthOptions, Branch, RepoCheckout
from issue_context.models import Document, Issue, blob_url, document_id
from issue_context.pipeline import BatchHook, EmbeddingPipeline

logger = logging.getLogger(__name__)


class Tokenizer(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


class TiktokenTokenizer:
    """tiktoken 인코딩 래퍼. 본문에 특수 토큰 문자열이 있어도 일반 텍스트로 센다."""

    def __init__(self, encoding: str | None = None):
        self._encoding = tiktoken.get_encoding(encoding or settings.tokenizer_encoding)

    def encode(self, text: str) -> list[int]:
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, tokens: list[int]) -> str:
        return self._encoding.decode(tokens)


def truncate_to_token_budget(content: str, tokenizer: Tokenizer, max_tokens: int) -> str:
    """토큰 수가 max_tokens를 넘으면 앞쪽 max_tokens 토큰 이내로 자른다.

    바이트 단위 토큰 경계가 멀티바이트 문자 중간에 걸리면 디코딩 결과 끝에 U+FFFD가 붙고,
    다시 인코딩하면 토큰 수가 늘 수 있다. 결과가 원문의 접두사이고 다시 인코딩해도
    max_tokens 이하가 될 때까지 끝 토큰을 하나씩 뺀다.
    """
    tokens = tokenizer.encode(content)
    if len(tokens) <= max_tokens:
        return content

    tokens = tokens[:max_tokens]
    text = tokenizer.decode(tokens)
    while tokens and (not content.startswith(text) or len(tokenizer.encode(text)) > max_tokens):
        tokens = tokens[:-1]
        text = tokenizer.decode(tokens)
    return text


class IssueSource(Protocol):
    def fetch_issues(self, owner: str, repo: str) -> list[Issue]: ...


@dataclass
class IndexingReport:
    branches: int = 0
    documents: int = 0
    issues: int = 0
    skipped_files: int = 0


class RepositoryIndexer:
    """브랜치 파일 → Document 변환기.

    파일 내용 정책:
    - 비어 있는 파일, UTF-8로 디코딩되지 않는 바이너리 파일은 경고 후 건너뛴다.
    - 파일 읽기 I/O 오류는 IndexingError로 해당 브랜치 변환을 중단한다.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        tokenizer: Tokenizer | None = None,
        max_tokens: int | None = None,
        host: str | None = None,
    ):
        self._owner = owner
        self._repo = repo
        self._tokenizer = tokenizer or TiktokenTokenizer()
        self._max_tokens = max_tokens or settings.max_file_tokens
        self._host = host or settings.github_host
        self.skipped_files = 0

    def convert_branch(self, checkout: RepoCheckout, branch: Branch) -> list[Document]:
        """브랜치를 체크아웃하고 파일마다 Document를 만든다."""
        checkout.switch_branch(branch.name)
        docs = []
        for file in branch.files:
            try:
                raw = checkout.read_file(file)
            except OSError as e:
                raise IndexingError(
                    f"Failed to get file content: {branch.name}@{file.path}",
                    details={"branch": branch.name, "path": file.path},
                ) from e

            if not raw:
                logger.warning("빈 파일 건너뜀: %s@%s", branch.name, file.path, extra={"branch": branch.name})
                self.skipped_files += 1
                continue
            try:
                content = raw.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning(
                    "텍스트가 아닌 파일 건너뜀: %s@%s", branch.name, file.path, extra={"branch": branch.name}
                )
                self.skipped_files += 1
                continue

            content = truncate_to_token_budget(content, self._tokenizer, self._max_tokens)
            docs.append(Document(
                id=document_id(branch.name, file.path),
                content=content,
                branch=branch.name,
                url=blob_url(self._host, self._owner, self._repo, branch.name, file.path),
            ))

        logger.info("브랜치 %s: Document %d개", branch.name, len(docs), extra={"branch": branch.name})
        return docs

    def convert(self, checkout: RepoCheckout, branches: list[str] | None = None) -> list[Document]:
        """대상 브랜치 전체를 Document로 변환한다. branches가 비어 있으면 전체 브랜치."""
        docs = []
        for branch in checkout.get_branches(branches or []):
            docs.extend(self.convert_branch(checkout, branch))
        return docs


def repository_url(owner: str, repo: str, host: str | None = None) -> str:
    return f"https://{host or settings.github_host}/{owner}/{repo}.git"


def index_repository(
    owner: str,
    repo: str,
    backend: RetrievalBackend,
    embed_fn: EmbeddingFn,
    auth: AuthOptions | None = None,
    branches: list[str] | None = None,
    issue_source: IssueSource | None = None,
    url: str | None = None,
    tokenizer: Tokenizer | None = None,
    on_batch: BatchHook | None = None,
    ignore: list[str] | None = None,
) -> IndexingReport:
    """저장소 코드와 이슈를 한 번의 배치로 인덱싱한다.

    Args:
        owner, repo: 저장소 소유자/이름. Document URL 생성에도 쓴다.
        backend: 적재 대상 백엔드.
        embed_fn: 텍스트 → 벡터 함수.
        auth: 클론용 인증 정보.
        branches: 대상 브랜치. 비어 있으면 전체 브랜치.
        issue_source: 이슈 공급자. None이면 이슈는 적재하지 않는다.
        url: 클론 URL. None이면 https://<host>/<owner>/<repo>.git
        ignore: 건너뛸 파일 glob 패턴. None이면 settings.index_ignore.

    Returns:
        IndexingReport. 실패 시 예외가 전파되고 이미 적재된 배치는 남는다.
    """
    report = IndexingReport()
    indexer = RepositoryIndexer(owner, repo, tokenizer=tokenizer)
    pipeline = EmbeddingPipeline(backend, embed_fn, on_batch=on_batch)

    ignore = settings.index_ignore if ignore is None else ignore
    with RepoCheckout.clone(url or repository_url(owner, repo), auth, ignore=ignore) as checkout:
        for branch in checkout.get_branches(branches or []):
            docs = indexer.convert_branch(checkout, branch)
            report.branches += 1
            report.documents += pipeline.create_codebase_db(docs)

    report.skipped_files = indexer.skipped_files

    if issue_source is not None:
        issues = issue_source.fetch_issues(owner, repo)
        report.issues = pipeline.create_issue_db(issues)

    logger.info(
        "인덱싱 완료: branches=%d, documents=%d, issues=%d, skipped=%d",
        report.branches, report.documents, report.issues, report.skipped_files,
    )
    return report
