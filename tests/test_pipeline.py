"""임베딩/적재 파이프라인 테스트 - 배치, 인덱스 확인, 실패 시 동작 검증."""

from unittest.mock import MagicMock

import pytest

from issue_context.backend import RetrievalBackend
from issue_context.errors import BackendError, IndexingError
from issue_context.models import Document, Issue
from issue_context.pipeline import EmbeddingPipeline


def make_docs(n: int) -> list[Document]:
    return [Document(id=f"main@f{i}.py", content=f"content {i}", branch="main") for i in range(n)]


def fake_embed(text: str) -> list[float]:
    return [float(len(text)), 1.0]


@pytest.fixture()
def backend():
    mock = MagicMock(spec=RetrievalBackend)
    mock.upsert_documents.side_effect = lambda docs, vectors: len(docs)
    mock.upsert_issues.side_effect = lambda issues, vectors: len(issues)
    return mock


class TestCreateCodebaseDb:
    def test_upserts_in_batches(self, backend):
        pipeline = EmbeddingPipeline(backend, fake_embed, batch_size=2, concurrency=1)

        total = pipeline.create_codebase_db(make_docs(5))

        assert total == 5
        batch_sizes = [len(call.args[0]) for call in backend.upsert_documents.call_args_list]
        assert batch_sizes == [2, 2, 1]

    def test_vectors_match_records(self, backend):
        pipeline = EmbeddingPipeline(backend, fake_embed, batch_size=10, concurrency=4)
        docs = make_docs(3)

        pipeline.create_codebase_db(docs)

        sent_docs, vectors = backend.upsert_documents.call_args.args
        assert sent_docs == docs
        assert vectors == [fake_embed(doc.content) for doc in docs]

    def test_ensures_index_once(self, backend):
        pipeline = EmbeddingPipeline(backend, fake_embed, batch_size=1, concurrency=1)

        pipeline.create_codebase_db(make_docs(3))
        pipeline.create_issue_db([Issue(id="1", url="u", content="c", title="t", state="open")])

        backend.ensure_index.assert_called_once()

    def test_empty_input_does_nothing(self, backend):
        pipeline = EmbeddingPipeline(backend, fake_embed)

        assert pipeline.create_codebase_db([]) == 0
        backend.ensure_index.assert_not_called()
        backend.upsert_documents.assert_not_called()

    def test_reports_progress(self, backend):
        hook = MagicMock()
        pipeline = EmbeddingPipeline(backend, fake_embed, batch_size=2, concurrency=1, on_batch=hook)

        pipeline.create_codebase_db(make_docs(3))

        assert [call.args for call in hook.call_args_list] == [("codebase", 2, 3), ("codebase", 3, 3)]


class TestFailure:
    def test_embedding_failure_stops_without_rollback(self, backend):
        def flaky_embed(text):
            if text == "content 2":
                raise RuntimeError("rate limited")
            return [1.0]

        pipeline = EmbeddingPipeline(backend, flaky_embed, batch_size=2, concurrency=1)

        with pytest.raises(IndexingError) as exc_info:
            pipeline.create_codebase_db(make_docs(4))

        # 첫 배치는 이미 적재되어 남는다
        assert backend.upsert_documents.call_count == 1
        assert exc_info.value.details["upserted"] == 2
        backend.delete_records.assert_not_called()

    def test_backend_error_propagates_unchanged(self, backend):
        backend.upsert_documents.side_effect = BackendError("upsert 실패")
        pipeline = EmbeddingPipeline(backend, fake_embed, batch_size=2, concurrency=1)

        with pytest.raises(BackendError):
            pipeline.create_codebase_db(make_docs(2))


class TestCreateIssueDb:
    def test_embeds_title_and_body(self, backend):
        embed = MagicMock(return_value=[0.5])
        issue = Issue(id="12", url="u", content="It crashes.", title="Crash on start", state="open")
        pipeline = EmbeddingPipeline(backend, embed, concurrency=1)

        count = pipeline.create_issue_db([issue])

        assert count == 1
        embed.assert_called_once_with("Title:Crash on startBody:It crashes.")
        backend.upsert_issues.assert_called_once_with([issue], [[0.5]])
