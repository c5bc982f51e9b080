"""FastAPI 서버 테스트 - 인덱싱 요청, 검색 API, 오류 응답 검증."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from issue_context.errors import BackendConnectionError, IndexNotReadyError, NotFoundError, QuerySyntaxError
from issue_context.models import Document, Options
from issue_context.server import app


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
def mock_retriever():
    """Retriever.from_settings가 반환하는 컨텍스트 매니저를 모킹한다."""
    with patch("issue_context.server.Retriever") as mock_cls:
        retriever = MagicMock()
        mock_cls.from_settings.return_value.__enter__.return_value = retriever
        yield mock_cls, retriever


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "backend" in data
        assert "embed_model" in data


class TestIndexEndpoint:
    def test_accepts_and_runs_in_background(self, client):
        with patch("issue_context.server.run_indexing") as mock_run:
            resp = client.post("/index", json={"owner": "Acme", "repo": "My_Repo", "branches": ["main"]})

        assert resp.status_code == 200
        assert resp.json() == {
            "status": "accepted",
            "owner": "Acme",
            "repo": "My_Repo",
            "index": "Acme-my-repo",
        }
        # BackgroundTasks로 호출되므로 TestClient에서는 동기 실행됨
        mock_run.assert_called_once_with("Acme", "My_Repo", ["main"], True, None)

    def test_ignore_patterns_forwarded(self, client):
        with patch("issue_context.server.run_indexing") as mock_run:
            resp = client.post(
                "/index",
                json={"owner": "acme", "repo": "widgets", "ignore": ["*.png", "vendor/*"]},
            )

        assert resp.status_code == 200
        mock_run.assert_called_once_with("acme", "widgets", [], True, ["*.png", "vendor/*"])

    def test_rejects_empty_owner(self, client):
        with patch("issue_context.server.run_indexing") as mock_run:
            resp = client.post("/index", json={"owner": "", "repo": "widgets"})

        assert resp.status_code == 400
        mock_run.assert_not_called()


class TestRetrieveEndpoint:
    def test_returns_documents(self, client, mock_retriever):
        mock_cls, retriever = mock_retriever
        retriever.retrieve.return_value = [
            Document(id="main@a.py", content="x", branch="main", url="u", score=1.0),
        ]

        resp = client.post(
            "/retrieve",
            json={"owner": "acme", "repo": "widgets", "query": "login fails", "top_k": 2},
        )

        assert resp.status_code == 200
        assert resp.json()["documents"] == [
            {"id": "main@a.py", "content": "x", "branch": "main", "url": "u", "score": 1.0},
        ]
        mock_cls.from_settings.assert_called_once_with("acme-widgets")
        retriever.retrieve.assert_called_once_with("login fails", options=Options(top_k=2))

    @pytest.mark.parametrize(
        "error, status",
        [
            (NotFoundError("No results found"), 404),
            (BackendConnectionError("Neo4j 연결 실패"), 503),
            (IndexNotReadyError("acme-widgets", 280.0, "Creating"), 503),
            (QuerySyntaxError("Cypher 문법 오류"), 502),
        ],
    )
    def test_error_mapping(self, client, mock_retriever, error, status):
        _, retriever = mock_retriever
        retriever.retrieve.side_effect = error

        resp = client.post("/retrieve", json={"owner": "acme", "repo": "widgets", "query": "q"})

        assert resp.status_code == status
        assert resp.json()["error"] == type(error).__name__


class TestSimilarIssuesEndpoint:
    def test_returns_markdown(self, client, mock_retriever):
        _, retriever = mock_retriever
        retriever.retrieve_issue.return_value = "## Other issues similar to this one are: \n1. [t #1 (open)](u)\n"

        with patch("issue_context.server.embed_single", return_value=[0.1]) as mock_embed:
            resp = client.post(
                "/similar-issues",
                json={"owner": "acme", "repo": "widgets", "query": "crash", "issue_number": 5},
            )

        assert resp.status_code == 200
        assert resp.json()["markdown"].startswith("## Other issues")
        mock_embed.assert_called_once_with("crash")
        retriever.retrieve_issue.assert_called_once_with([0.1], 5)


class TestRunIndexing:
    def test_indexes_code_and_issues(self):
        from issue_context.server import run_indexing

        mock_github = MagicMock()
        mock_github.__enter__.return_value = mock_github

        with patch("issue_context.server.create_backend") as mock_create, \
             patch("issue_context.server.GitHubClient", return_value=mock_github), \
             patch("issue_context.server.index_repository") as mock_index:
            backend = mock_create.return_value.__enter__.return_value
            run_indexing("acme", "widgets", ["main"])

        mock_create.assert_called_once_with("acme-widgets")
        assert mock_index.call_args.args[:3] == ("acme", "widgets", backend)
        assert mock_index.call_args.kwargs["issue_source"] is mock_github
        assert mock_index.call_args.kwargs["branches"] == ["main"]

    def test_without_issues(self):
        from issue_context.server import run_indexing

        with patch("issue_context.server.create_backend"), \
             patch("issue_context.server.GitHubClient") as mock_github_cls, \
             patch("issue_context.server.index_repository") as mock_index:
            run_indexing("acme", "widgets", [], include_issues=False)

        mock_github_cls.assert_not_called()
        assert "issue_source" not in mock_index.call_args.kwargs

    def test_ignore_patterns_reach_index_repository(self):
        from issue_context.server import run_indexing

        with patch("issue_context.server.create_backend"), \
             patch("issue_context.server.index_repository") as mock_index:
            run_indexing("acme", "widgets", [], include_issues=False, ignore=["*.lock"])

        assert mock_index.call_args.kwargs["ignore"] == ["*.lock"]

    def test_failure_is_logged_not_raised(self, caplog):
        from issue_context.server import run_indexing

        with patch("issue_context.server.create_backend", side_effect=BackendConnectionError("down")):
            run_indexing("acme", "widgets", [])

        assert "인덱싱 실패" in caplog.text
