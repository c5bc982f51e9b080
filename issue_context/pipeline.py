"""임베딩/적재 파이프라인 - 레코드 → 임베딩 → 백엔드 upsert.

배치 단위로 임베딩(병렬)과 upsert(순차)를 반복한다. 중간에 실패하면 그 지점에서
멈추며, 이미 upsert된 배치는 그대로 남는다 (롤백 없음).
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence, TypeVar

from issue_context.backend import RetrievalBackend
from issue_context.config import settings
from issue_context.embedding import EmbeddingFn
from issue_context.errors import IndexingError, RetrievalError
from issue_context.models import NAMESPACE_CODEBASE, NAMESPACE_ISSUES, Document, Issue

logger = logging.getLogger(__name__)

R = TypeVar("R")

# (namespace, upserted_so_far, total)
BatchHook = Callable[[str, int, int], None]


class EmbeddingPipeline:
    def __init__(
        self,
        backend: RetrievalBackend,
        embed_fn: EmbeddingFn,
        batch_size: int | None = None,
        concurrency: int | None = None,
        on_batch: BatchHook | None = None,
    ):
        self._backend = backend
        self._embed_fn = embed_fn
        self._batch_size = batch_size or settings.upsert_batch_size
        self._concurrency = concurrency or settings.index_concurrency
        self._on_batch = on_batch
        self._index_checked = False

    def _ensure_index(self):
        # 첫 쓰기 전에 한 번만 확인한다
        if not self._index_checked:
            self._backend.ensure_index()
            self._index_checked = True

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        if self._concurrency <= 1 or len(texts) <= 1:
            return [self._embed_fn(text) for text in texts]
        with ThreadPoolExecutor(max_workers=self._concurrency) as pool:
            return list(pool.map(self._embed_fn, texts))

    def _run(
        self,
        namespace: str,
        records: Sequence[R],
        text_of: Callable[[R], str],
        upsert: Callable[[list[R], list[list[float]]], int],
    ) -> int:
        if not records:
            logger.info("%s: 적재할 레코드 없음", namespace)
            return 0

        self._ensure_index()
        total = len(records)
        upserted = 0
        for start in range(0, total, self._batch_size):
            batch = list(records[start : start + self._batch_size])
            try:
                vectors = self._embed_batch([text_of(record) for record in batch])
            except RetrievalError:
                raise
            except Exception as e:
                raise IndexingError(
                    f"임베딩 생성 실패 ({namespace} {start}-{start + len(batch) - 1}): {e}",
                    details={"namespace": namespace, "upserted": upserted},
                ) from e

            upserted += upsert(batch, vectors)
            logger.info("%s: %d/%d 적재", namespace, upserted, total, extra={"namespace": namespace})
            if self._on_batch is not None:
                self._on_batch(namespace, upserted, total)
        return upserted

    def create_codebase_db(self, docs: Sequence[Document]) -> int:
        """Document마다 임베딩을 만들어 codebase 네임스페이스에 upsert한다."""
        return self._run(
            NAMESPACE_CODEBASE,
            docs,
            lambda doc: doc.content,
            self._backend.upsert_documents,
        )

    def create_issue_db(self, issues: Sequence[Issue]) -> int:
        """Issue마다 "Title:...Body:..." 텍스트를 임베딩해 issues 네임스페이스에 upsert한다."""
        return self._run(
            NAMESPACE_ISSUES,
            issues,
            lambda issue: issue.embedding_text,
            self._backend.upsert_issues,
        )
