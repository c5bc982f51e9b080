"""하이브리드 검색 점수 융합.

벡터 검색과 전문(full-text) 검색은 점수 척도가 다르다. 스캔별로 최댓값으로 나눠
정규화한 뒤 노드 단위로 합치고, 두 점수 중 큰 값을 최종 점수로 쓴다.
I/O 없이 순수 함수로만 구성한다.
"""

from dataclasses import dataclass, replace
from typing import Callable, Iterable


@dataclass(frozen=True)
class ScoredNode:
    key: str  # 노드 식별자 (두 스캔을 합치는 기준)
    id: str
    text: str
    score: float
    branch: str = ""
    url: str = ""


def normalize_by_max(hits: list[ScoredNode]) -> list[ScoredNode]:
    """스캔 내 최고 점수로 나눈다. 최고 점수 노드는 정확히 1.0이 된다.

    최고 점수가 0 이하면 비교할 기준이 없으므로 모두 0.0으로 둔다.
    """
    if not hits:
        return []
    top = max(hit.score for hit in hits)
    if top <= 0:
        return [replace(hit, score=0.0) for hit in hits]
    return [replace(hit, score=hit.score / top) for hit in hits]


def fuse_max(*scans: list[ScoredNode]) -> list[ScoredNode]:
    """정규화된 스캔들을 노드 key 기준으로 합친다.

    같은 노드가 여러 스캔에 있으면 점수의 최댓값을 쓴다 (합/평균이 아님).
    결과는 점수 내림차순, 동점이면 먼저 나타난 순서를 유지한다.
    """
    fused: dict[str, ScoredNode] = {}
    for scan in scans:
        for hit in scan:
            current = fused.get(hit.key)
            if current is None or hit.score > current.score:
                fused[hit.key] = hit
    return sorted(fused.values(), key=lambda hit: hit.score, reverse=True)


def hybrid_rank(
    vector_hits: list[ScoredNode],
    fulltext_hits: list[ScoredNode],
    top_k: int,
    keep: Callable[[ScoredNode], bool] | None = None,
) -> list[ScoredNode]:
    """정규화 → 합집합(max) → 정렬 → 필터 → top_k 절단."""
    fused = fuse_max(normalize_by_max(vector_hits), normalize_by_max(fulltext_hits))
    if keep is not None:
        fused = [hit for hit in fused if keep(hit)]
    return fused[:top_k]


def split_by_modality(rows: Iterable[tuple[str, ScoredNode]]) -> tuple[list[ScoredNode], list[ScoredNode]]:
    """(modality, node) 행을 벡터/전문 스캔으로 나눈다."""
    vector_hits, fulltext_hits = [], []
    for modality, node in rows:
        if modality == "vector":
            vector_hits.append(node)
        else:
            fulltext_hits.append(node)
    return vector_hits, fulltext_hits
