"""점수 융합 테스트 - 정규화(최댓값=1.0), 합집합(max), 정렬/절단 규칙 검증."""

import random

import pytest

from issue_context.fusion import (
    ScoredNode,
    fuse_max,
    hybrid_rank,
    normalize_by_max,
    split_by_modality,
)


def node(key: str, score: float, branch: str = "main") -> ScoredNode:
    return ScoredNode(key=key, id=f"{branch}@{key}", text=key, score=score, branch=branch)


class TestNormalize:
    def test_top_hit_is_exactly_one(self):
        normalized = normalize_by_max([node("a", 0.4), node("b", 0.8), node("c", 0.2)])

        scores = {n.key: n.score for n in normalized}
        assert scores["b"] == 1.0
        assert scores["a"] == pytest.approx(0.5)
        assert scores["c"] == pytest.approx(0.25)

    @pytest.mark.parametrize("seed", range(5))
    def test_top_hit_is_one_for_random_scales(self, seed):
        rng = random.Random(seed)
        scale = rng.choice([1.0, 7.5, 120.0])
        hits = [node(str(i), rng.random() * scale + 0.01) for i in range(10)]

        normalized = normalize_by_max(hits)

        assert max(n.score for n in normalized) == 1.0
        assert all(0.0 <= n.score <= 1.0 for n in normalized)

    def test_empty_scan(self):
        assert normalize_by_max([]) == []

    def test_zero_max_normalizes_to_zero(self):
        normalized = normalize_by_max([node("a", 0.0), node("b", 0.0)])

        assert [n.score for n in normalized] == [0.0, 0.0]


class TestFuseMax:
    def test_node_in_both_scans_keeps_max_not_sum_or_average(self):
        vector = [node("a", 1.0), node("b", 0.6)]
        fulltext = [node("b", 0.3), node("c", 1.0)]

        fused = {n.key: n.score for n in fuse_max(vector, fulltext)}

        assert fused["b"] == 0.6
        assert fused["b"] != 0.6 + 0.3
        assert fused["b"] != (0.6 + 0.3) / 2

    def test_union_contains_every_node_once(self):
        fused = fuse_max([node("a", 1.0), node("b", 0.5)], [node("b", 1.0), node("c", 0.1)])

        assert sorted(n.key for n in fused) == ["a", "b", "c"]

    def test_sorted_descending(self):
        fused = fuse_max([node("a", 0.2), node("b", 0.9)], [node("c", 0.5)])

        assert [n.key for n in fused] == ["b", "c", "a"]


class TestHybridRank:
    def test_differently_scaled_scans_become_comparable(self):
        # 벡터 점수는 0~1, 전문 검색 점수(BM25)는 수십 단위
        vector = [node("a", 0.92), node("b", 0.46)]
        fulltext = [node("c", 24.0), node("b", 12.0)]

        ranked = hybrid_rank(vector, fulltext, top_k=5)

        scores = {n.key: n.score for n in ranked}
        assert scores == {"a": 1.0, "c": 1.0, "b": pytest.approx(0.5)}

    @pytest.mark.parametrize("k", [1, 2, 3, 5])
    def test_returns_at_most_k_sorted(self, k):
        rng = random.Random(k)
        vector = [node(f"v{i}", rng.random()) for i in range(6)]
        fulltext = [node(f"t{i}", rng.random() * 30) for i in range(6)]

        ranked = hybrid_rank(vector, fulltext, top_k=k)

        assert len(ranked) <= k
        assert all(ranked[i].score >= ranked[i + 1].score for i in range(len(ranked) - 1))

    def test_keep_filter_applied_before_truncation(self):
        vector = [node("a", 1.0, "dev"), node("b", 0.9, "main"), node("c", 0.8, "main")]

        ranked = hybrid_rank(vector, [], top_k=2, keep=lambda n: n.branch == "main")

        assert [n.key for n in ranked] == ["b", "c"]


class TestSplitByModality:
    def test_split(self):
        rows = [("vector", node("a", 0.9)), ("fulltext", node("b", 3.0)), ("vector", node("c", 0.1))]

        vector, fulltext = split_by_modality(rows)

        assert [n.key for n in vector] == ["a", "c"]
        assert [n.key for n in fulltext] == ["b"]
