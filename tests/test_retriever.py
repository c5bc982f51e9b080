"""Retriever 테스트 - 백엔드 위임, 유사 이슈 선택/포맷 검증.

백엔드는 MagicMock으로 대체한다. 백엔드별 동작은 test_vectorstore/test_graphstore에서 검증한다.
"""

from unittest.mock import MagicMock, patch

import pytest

from issue_context.backend import BackendKind, RetrievalBackend
from issue_context.errors import NotFoundError
from issue_context.models import Document, Issue, Options
from issue_context.retriever import Retriever

FAKE_EMBEDDING = [0.1] * 1536


def make_issue(number: int) -> Issue:
    return Issue(
        id=str(number),
        url=f"https://github.com/acme/widgets/issues/{number}",
        content="body",
        title=f"Issue {number}",
        state="open",
    )


@pytest.fixture()
def backend():
    return MagicMock(spec=RetrievalBackend)


@pytest.fixture()
def embed_fn():
    return MagicMock(return_value=FAKE_EMBEDDING)


@pytest.fixture()
def retriever(backend, embed_fn):
    return Retriever(backend, embed_fn)


class TestRetrieve:
    def test_delegates_with_default_options(self, retriever, backend, embed_fn):
        expected = [Document(id="main@a.py", content="x", score=1.0)]
        backend.retrieve.return_value = expected

        docs = retriever.retrieve("login fails")

        assert docs == expected
        backend.retrieve.assert_called_once_with("login fails", embed_fn, Options())

    def test_explicit_embed_fn_overrides_default(self, retriever, backend):
        other = MagicMock(return_value=FAKE_EMBEDDING)
        options = Options(top_k=2, branches=["main"])

        retriever.retrieve("q", other, options)

        backend.retrieve.assert_called_once_with("q", other, options)

    def test_not_found_propagates(self, retriever, backend):
        backend.retrieve.side_effect = NotFoundError("No results found")

        with pytest.raises(NotFoundError):
            retriever.retrieve("nothing")

    def test_retrieve_by_vector(self, retriever, backend):
        retriever.retrieve_by_vector(FAKE_EMBEDDING)

        backend.retrieve_by_vector.assert_called_once_with(FAKE_EMBEDDING, Options())


class TestSimilarIssues:
    def test_fetches_one_extra_and_excludes_self(self, retriever, backend):
        backend.retrieve_issues.return_value = [make_issue(5), make_issue(1), make_issue(2), make_issue(3)]

        issues = retriever.similar_issues(FAKE_EMBEDDING, issue_number=5)

        backend.retrieve_issues.assert_called_once_with(FAKE_EMBEDDING, 4)
        assert [i.id for i in issues] == ["1", "2", "3"]

    def test_without_issue_number(self, retriever, backend):
        backend.retrieve_issues.return_value = [make_issue(1), make_issue(2), make_issue(3)]

        issues = retriever.similar_issues(FAKE_EMBEDDING)

        backend.retrieve_issues.assert_called_once_with(FAKE_EMBEDDING, 3)
        assert len(issues) == 3

    def test_retrieve_issue_markdown(self, retriever, backend):
        backend.retrieve_issues.return_value = [make_issue(12), make_issue(40)]

        text = retriever.retrieve_issue(FAKE_EMBEDDING, issue_number=99)

        assert text.splitlines() == [
            "## Other issues similar to this one are: ",
            "1. [Issue 12 #12 (open)](https://github.com/acme/widgets/issues/12)",
            "2. [Issue 40 #40 (open)](https://github.com/acme/widgets/issues/40)",
        ]

    def test_retrieve_issue_only_self_is_not_found(self, retriever, backend):
        backend.retrieve_issues.return_value = [make_issue(5)]

        with pytest.raises(NotFoundError):
            retriever.retrieve_issue(FAKE_EMBEDDING, issue_number=5)


class TestFromSettings:
    def test_creates_backend(self, embed_fn):
        with patch("issue_context.retriever.create_backend") as mock_create:
            retriever = Retriever.from_settings("acme-widgets", BackendKind.GRAPH, embed_fn)

        mock_create.assert_called_once_with("acme-widgets", BackendKind.GRAPH)
        assert retriever.backend is mock_create.return_value

    def test_context_manager_closes_backend(self, backend):
        with Retriever(backend):
            pass

        backend.close.assert_called_once()
