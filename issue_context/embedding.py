"""임베딩 생성 - OpenAI 호환 /embeddings API 사용.

검색 엔진은 `EmbeddingFn`(문자열 -> 벡터)만 알면 된다. 여기 구현은 기본값이다.
"""

from typing import Callable

import httpx

from issue_context.config import settings
from issue_context.errors import EmbeddingError

EmbeddingFn = Callable[[str], list[float]]


def embed(texts: str | list[str]) -> list[list[float]]:
    """텍스트를 벡터로 변환한다.

    Args:
        texts: 단일 문자열 또는 문자열 리스트.

    Returns:
        임베딩 벡터 리스트. 단일 입력이어도 리스트로 반환.

    Raises:
        EmbeddingError: 벡터 차원이 settings.embed_dim과 다를 때.
    """
    if isinstance(texts, str):
        texts = [texts]

    resp = httpx.post(
        f"{settings.embedding_base_url.rstrip('/')}/embeddings",
        headers={"Authorization": f"Bearer {settings.embedding_api_key}"},
        json={"model": settings.embed_model, "input": texts},
        timeout=120.0,
    )
    resp.raise_for_status()
    # 응답 순서가 입력 순서와 다를 수 있어 index로 정렬한다
    data = sorted(resp.json()["data"], key=lambda item: item["index"])
    vectors = [item["embedding"] for item in data]

    for vector in vectors:
        if len(vector) != settings.embed_dim:
            raise EmbeddingError(
                f"임베딩 차원 불일치: expected {settings.embed_dim}, got {len(vector)} ({settings.embed_model})",
                details={"expected": settings.embed_dim, "actual": len(vector), "model": settings.embed_model},
            )
    return vectors


def embed_single(text: str) -> list[float]:
    """단일 텍스트의 임베딩 벡터를 반환한다."""
    return embed(text)[0]
