"""Service wiring for the API.

Builds the stores, recorder, aggregator and pipeline once per process
and hands them to route handlers through :func:`get_services`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from claims.source import ClaimSource
from config import CHROMA_PERSIST_DIR, DB_PATH
from outcomes.effectiveness import EffectivenessAggregator
from outcomes.recorder import OutcomeRecorder
from recommendations.pipeline import DecisionPipeline
from recommendations.store import RecommendationStore
from rules.store import RuleStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    db_path: str
    rule_store: RuleStore
    claim_source: ClaimSource
    recommendation_store: RecommendationStore
    recorder: OutcomeRecorder
    aggregator: EffectivenessAggregator
    pipeline: DecisionPipeline
    case_index: Any | None = None

    def close(self) -> None:
        self.pipeline.shutdown()


def build_services(
    db_path: str | None = None,
    case_index: Any | None = None,
    with_case_index: bool = True,
) -> Services:
    """Create every service against one SQLite database.

    Args:
        db_path: SQLite database path (defaults to ``DB_PATH``)
        case_index: Similar-case index to use; built from
            ``CHROMA_PERSIST_DIR`` when omitted and ``with_case_index`` is set
    """
    db_path = db_path or DB_PATH
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    if case_index is None and with_case_index:
        from similarity import CaseIndex

        case_index = CaseIndex(persist_dir=CHROMA_PERSIST_DIR)

    rule_store = RuleStore(db_path)
    claim_source = ClaimSource(db_path)
    recommendation_store = RecommendationStore(db_path)
    recorder = OutcomeRecorder(
        db_path,
        recommendation_store,
        rule_store=rule_store,
        case_index=case_index,
    )
    aggregator = EffectivenessAggregator(
        recorder,
        rule_store=rule_store,
        recommendation_store=recommendation_store,
    )
    pipeline = DecisionPipeline(
        rule_store,
        claim_source,
        recommendation_store,
        recorder,
        aggregator=aggregator,
        case_index=case_index,
    )
    logger.info(f"Services initialized with database {db_path}")
    return Services(
        db_path=db_path,
        rule_store=rule_store,
        claim_source=claim_source,
        recommendation_store=recommendation_store,
        recorder=recorder,
        aggregator=aggregator,
        pipeline=pipeline,
        case_index=case_index,
    )


_services: Services | None = None


def get_services() -> Services:
    """Get or create the global services."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Services | None) -> None:
    global _services
    if _services is not None and _services is not services:
        _services.close()
    _services = services
