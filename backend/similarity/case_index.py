"""ChromaDB index of historical claims for similar-case retrieval.

Claims are embedded with a deterministic feature-hashing scheme over
their facts, so no embedding model is downloaded. Embeddings are passed
to ChromaDB explicitly and the collection is created without an
embedding function.

Each case carries metadata:
- org_id: owning organization (queries never cross organizations)
- outcome: latest observed result, once one is recorded
- action: suggested action that the outcome was observed for
"""

from __future__ import annotations

import hashlib
import logging
import math
import os
import re
from collections.abc import Mapping
from typing import Any

import chromadb
from chromadb.config import Settings

from recommendations.models import SimilarCase

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS = 256

_INDEX_PATTERN = re.compile(r"\[\d+\]")


def _hash_feature(feature: str) -> tuple[int, float]:
    digest = hashlib.sha256(feature.encode("utf-8")).digest()
    index = int.from_bytes(digest[:4], "big") % EMBEDDING_DIMENSIONS
    sign = 1.0 if digest[4] & 1 else -1.0
    return index, sign


def _features(path: str, value: Any) -> list[str]:
    path = _INDEX_PATTERN.sub("[]", path)
    if isinstance(value, bool):
        return [f"{path}={value}"]
    if isinstance(value, (int, float)):
        # Bucket magnitudes so nearby amounts land on the same feature.
        bucket = int(math.log2(abs(value) + 1))
        return [f"{path}~{bucket}", path]
    if isinstance(value, str):
        return [f"{path}={value.strip().lower()}"]
    if isinstance(value, (list, tuple)):
        return [f for item in value for f in _features(path, item)]
    return [path]


def embed_facts(facts: Mapping[str, Any]) -> list[float]:
    """Feature-hash a fact map into a unit-length vector."""
    vector = [0.0] * EMBEDDING_DIMENSIONS
    # Bias feature keeps the vector non-zero for empty fact maps.
    index, sign = _hash_feature("__bias__")
    vector[index] += sign
    for path in sorted(facts):
        for feature in _features(path, facts[path]):
            index, sign = _hash_feature(feature)
            vector[index] += sign

    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector] if norm else vector


class CaseIndex:
    """Similar-case retrieval over a ChromaDB collection."""

    def __init__(
        self,
        persist_dir: str | None = None,
        collection_name: str = "claim_cases",
        client: Any | None = None,
    ):
        self.persist_dir = persist_dir or os.getenv("CHROMA_PERSIST_DIR", "./data/chroma")
        self.collection_name = collection_name

        self.client = client or chromadb.PersistentClient(
            path=self.persist_dir,
            settings=Settings(anonymized_telemetry=False),
        )
        self.collection = self.client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine", "description": "Historical claims"},
            embedding_function=None,
        )

    def index_case(self, claim_id: str, org_id: str, facts: Mapping[str, Any]) -> None:
        """Add or refresh a claim's embedding, keeping any recorded outcome."""
        metadata: dict[str, Any] = {"org_id": org_id, "claim_id": claim_id}
        existing = self.collection.get(ids=[claim_id], include=["metadatas"])
        if existing["ids"] and existing["metadatas"]:
            previous = existing["metadatas"][0] or {}
            metadata.update(
                {k: v for k, v in previous.items() if k in ("outcome", "action")}
            )

        self.collection.upsert(
            ids=[claim_id],
            embeddings=[embed_facts(facts)],
            metadatas=[metadata],
        )

    def label_case(self, claim_id: str, outcome: str, action: str | None = None) -> bool:
        """Record the latest observed outcome on an indexed case.

        Returns:
            True if updated, False if the case isn't indexed.
        """
        existing = self.collection.get(ids=[claim_id], include=["metadatas"])
        if not existing["ids"]:
            return False

        metadata = dict(existing["metadatas"][0] or {})
        metadata["outcome"] = outcome
        if action is not None:
            metadata["action"] = action
        else:
            metadata.pop("action", None)
        self.collection.update(ids=[claim_id], metadatas=[metadata])
        return True

    def find_similar(
        self,
        facts: Mapping[str, Any],
        k: int,
        org_id: str,
        exclude_claim_id: str | None = None,
    ) -> list[SimilarCase]:
        """Return up to ``k`` cases of ``org_id`` most similar to ``facts``.

        Scores are cosine similarities mapped to 0-1 (higher is closer).
        """
        if k <= 0:
            return []
        candidates = len(self.collection.get(where={"org_id": org_id}, include=[])["ids"])
        if candidates == 0:
            return []

        results = self.collection.query(
            query_embeddings=[embed_facts(facts)],
            n_results=min(k + 1, candidates),
            where={"org_id": org_id},
            include=["metadatas", "distances"],
        )

        similar = []
        ids = results["ids"][0] if results["ids"] else []
        for i, case_id in enumerate(ids):
            if case_id == exclude_claim_id:
                continue
            metadata = results["metadatas"][0][i] if results["metadatas"] else {}
            distance = results["distances"][0][i] if results["distances"] else None
            # Cosine distance ranges 0-2; map to a 0-1 similarity.
            score = max(0.0, min(1.0, 1 - (distance / 2))) if distance is not None else 0.0
            similar.append(
                SimilarCase(
                    claim_id=case_id,
                    score=round(score, 4),
                    outcome=(metadata or {}).get("outcome"),
                    action=(metadata or {}).get("action"),
                )
            )
        return similar[:k]

    def count(self) -> int:
        return self.collection.count()
