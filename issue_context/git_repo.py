"""저장소 클론 - 모든 원격 브랜치를 로컬 브랜치로 만들고 브랜치별 파일 목록을 제공한다."""

import fnmatch
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from git import Repo

logger = logging.getLogger(__name__)


@dataclass
class AuthOptions:
    username: str = ""
    token: str = ""


@dataclass
class RepoFile:
    path: str  # 저장소 루트 기준 POSIX 경로
    size: int


@dataclass
class Branch:
    name: str
    files: list[RepoFile] = field(default_factory=list)


def authenticated_url(url: str, auth: AuthOptions | None) -> str:
    """HTTP(S) URL에 Basic 인증 정보를 넣는다. 그 외 스킴은 그대로 둔다."""
    if auth is None or not auth.token:
        return url
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https"):
        return url
    user = quote(auth.username or "x-access-token", safe="")
    netloc = f"{user}:{quote(auth.token, safe='')}@{parts.hostname}"
    if parts.port:
        netloc += f":{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class RepoCheckout:
    """얕은 클론 작업 트리. 사용이 끝나면 close()로 임시 디렉토리를 지운다."""

    def __init__(self, repo: Repo, workdir: Path | None = None, ignore: list[str] | None = None):
        self._repo = repo
        self._root = Path(repo.working_tree_dir)
        self._workdir = workdir
        self._ignore = ignore or []

    @classmethod
    def clone(
        cls,
        url: str,
        auth: AuthOptions | None = None,
        ignore: list[str] | None = None,
        remote: str = "origin",
    ) -> "RepoCheckout":
        """depth=1로 클론한 뒤 원격 브랜치마다 로컬 추적 브랜치를 만든다."""
        workdir = Path(tempfile.mkdtemp(prefix="issue-context-"))
        try:
            repo = Repo.clone_from(
                authenticated_url(url, auth),
                workdir / "repo",
                depth=1,
                no_single_branch=True,
            )
            checkout = cls(repo, workdir=workdir, ignore=ignore)
            checkout.track_remote_branches(remote)
        except Exception:
            shutil.rmtree(workdir, ignore_errors=True)
            raise
        return checkout

    @property
    def root(self) -> Path:
        return self._root

    def track_remote_branches(self, remote: str = "origin") -> list[str]:
        """원격 브랜치마다 같은 이름의 로컬 추적 브랜치를 만든다."""
        created = []
        origin = self._repo.remote(remote)
        for ref in origin.refs:
            name = ref.remote_head
            if name == "HEAD":
                continue
            if name not in self._repo.heads:
                head = self._repo.create_head(name, ref)
                head.set_tracking_branch(ref)
                created.append(name)
                logger.debug("Branch %s set up to track %s", name, ref.name)
        logger.info("원격 브랜치 %d개 추적 설정 완료", len(created))
        return created

    def branch_names(self) -> list[str]:
        return [head.name for head in self._repo.heads]

    def switch_branch(self, name: str) -> None:
        self._repo.git.checkout(name, force=True)

    def list_files(self) -> list[RepoFile]:
        """현재 체크아웃된 작업 트리의 파일을 재귀적으로 나열한다 (.git 제외)."""
        files = []
        for path in sorted(self._root.rglob("*")):
            rel = path.relative_to(self._root)
            if rel.parts[0] == ".git" or not path.is_file():
                continue
            rel_path = rel.as_posix()
            if self._is_ignored(rel_path):
                continue
            files.append(RepoFile(path=rel_path, size=path.stat().st_size))
        return files

    def read_file(self, file: RepoFile) -> bytes:
        return (self._root / file.path).read_bytes()

    def get_branches(self, specified: list[str] | None = None) -> list[Branch]:
        """대상 브랜치별 파일 목록을 반환한다. specified가 비어 있으면 전체 브랜치."""
        branches = []
        for name in self.branch_names():
            if specified and name not in specified:
                continue
            self.switch_branch(name)
            branches.append(Branch(name=name, files=self.list_files()))
        return branches

    def _is_ignored(self, rel_path: str) -> bool:
        base = rel_path.rsplit("/", 1)[-1]
        return any(
            fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(base, pattern)
            for pattern in self._ignore
        )

    def close(self):
        self._repo.close()
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
