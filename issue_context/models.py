"""인덱싱/검색 레코드 - Document(코드 파일), Issue(이슈 스레드), Options."""

from dataclasses import dataclass, field

NAMESPACE_CODEBASE = "codebase"
NAMESPACE_ISSUES = "issues"


def document_id(branch: str, path: str) -> str:
    """브랜치+경로로 Document id(`branch@path`)를 만든다."""
    return f"{branch}@{path}"


def blob_url(host: str, owner: str, repo: str, branch: str, path: str) -> str:
    return f"https://{host}/{owner}/{repo}/blob/{branch}/{path}"


def index_name(owner: str, repo: str) -> str:
    """저장소별 인덱스 이름. 예: ("Acme", "My_Repo") -> "Acme-my-repo"."""
    name = owner + "-" + repo.lower()
    return name.replace("_", "-")


@dataclass
class Document:
    id: str
    content: str
    branch: str = ""
    url: str = ""
    score: float = 0.0

    def to_metadata(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "branch": self.branch,
            "url": self.url,
            "score": self.score,
        }

    @classmethod
    def from_metadata(cls, metadata: dict) -> "Document":
        """저장된 메타데이터로 Document를 복원한다. score는 복원하지 않는다."""
        return cls(
            id=metadata.get("id", ""),
            content=metadata.get("content", ""),
            branch=metadata.get("branch", ""),
            url=metadata.get("url", ""),
        )


@dataclass
class Issue:
    id: str
    url: str
    content: str
    title: str
    state: str

    def to_metadata(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "title": self.title,
            "url": self.url,
            "state": self.state,
        }

    @classmethod
    def from_metadata(cls, metadata: dict) -> "Issue":
        return cls(
            id=metadata.get("id", ""),
            url=metadata.get("url", ""),
            content=metadata.get("content", ""),
            title=metadata.get("title", ""),
            state=metadata.get("state", ""),
        )

    @property
    def embedding_text(self) -> str:
        """임베딩 입력 텍스트. 제목과 본문을 함께 사용한다."""
        return "Title:" + self.title + "Body:" + self.content

    @classmethod
    def from_github(cls, issue: dict, comments: list[dict]) -> "Issue":
        """GitHub REST API 응답(issue + comments)을 Issue로 변환한다.

        content는 본문 뒤에 "Comments: " 와 `login:body` 줄을 이어 붙인 형태다.
        """
        content = (issue.get("body") or "") + "\n" + "Comments: "
        for comment in comments:
            login = (comment.get("user") or {}).get("login", "")
            content += login + ":" + (comment.get("body") or "") + "\n"

        return cls(
            id=str(issue["number"]),
            url=issue.get("html_url", ""),
            content=content,
            title=issue.get("title", ""),
            state=issue.get("state", ""),
        )


@dataclass
class Options:
    top_k: int | None = None  # None이면 백엔드 기본값 (vector=3, graph=5)
    branches: list[str] = field(default_factory=list)  # 비어 있으면 전체 브랜치
    # 예약 필드 - 현재 사용하지 않음
    with_structured_data: bool = False
    enable_hybrid_retrieval: bool = False

    def resolve_top_k(self, default: int) -> int:
        if self.top_k is None or self.top_k <= 0:
            return default
        return self.top_k
