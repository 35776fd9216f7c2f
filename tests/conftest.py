"""Pytest configuration and fixtures."""

from __future__ import annotations

import atexit
import os
import shutil
import sys
import tempfile
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Add backend to path for imports
backend_path = str(Path(__file__).parent.parent / "backend")
if backend_path not in sys.path:
    sys.path.insert(0, backend_path)

# Set test paths before importing config
_temp_dir = tempfile.mkdtemp(prefix="decision-engine-tests-")
os.environ["DB_PATH"] = os.path.join(_temp_dir, "test.db")
os.environ["CHROMA_PERSIST_DIR"] = os.path.join(_temp_dir, "chroma")
os.environ["SCHEDULER_ENABLED"] = "false"


def _cleanup_temp_dir() -> None:
    """Clean up the temporary test directory."""
    shutil.rmtree(_temp_dir, ignore_errors=True)


# Register cleanup to run at exit
atexit.register(_cleanup_temp_dir)


ORG_ID = "org-alpha"
OTHER_ORG_ID = "org-beta"


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Fresh SQLite database per test."""
    return str(tmp_path / "decision_engine.db")


@pytest.fixture
def case_index():
    """In-memory similar-case index with its own collection."""
    import chromadb

    from similarity import CaseIndex

    return CaseIndex(
        client=chromadb.EphemeralClient(),
        collection_name=f"test_cases_{uuid.uuid4().hex[:12]}",
    )


@pytest.fixture
def make_rule() -> Callable[..., Any]:
    """Factory for in-memory rules built through the DSL parser."""
    from rules.dsl import parse_action, parse_trigger
    from rules.models import Rule

    def _make(
        rule_id: str,
        priority: int = 5,
        trigger: dict[str, Any] | None = None,
        action: dict[str, Any] | None = None,
        category: str = "quality_checks",
        org_id: str = ORG_ID,
        **kwargs: Any,
    ) -> Rule:
        if trigger is None:
            trigger = {"all": [{"path": "claim.status", "op": "equals", "value": "new"}]}
        if action is None:
            action = {"type": "recommend", "message": f"Action from {rule_id}"}
        return Rule(
            id=rule_id,
            org_id=org_id,
            name=kwargs.pop("name", rule_id),
            category=category,
            priority=priority,
            trigger=parse_trigger(trigger),
            action=parse_action(action, default_category=category),
            **kwargs,
        )

    return _make


@pytest.fixture
def rule_document() -> dict[str, Any]:
    """A valid rule document as the admin panel submits it."""
    return {
        "name": "EstimateReady",
        "description": "Submit once the estimate is drafted",
        "category": "quality_checks",
        "priority": 8,
        "trigger": {
            "all": [
                {"path": "claim.state", "op": "==", "value": "ESTIMATE_DRAFTED"},
                {"path": "claim.estimate.total", "op": ">", "value": 0},
            ]
        },
        "action": {
            "type": "recommend",
            "priority": "critical",
            "message": "Estimate is complete, submit the claim to the carrier",
            "suggestedAction": "submit_to_carrier",
            "confidence": 0.8,
        },
    }


@pytest.fixture
def sample_claim() -> dict[str, Any]:
    """Sample roofing claim pushed from the CRM."""
    return {
        "state": "ESTIMATE_DRAFTED",
        "status": "new",
        "carrier": "Acme Mutual",
        "estimate": {"total": 12500, "line_items": ["shingles", "drip_edge"]},
        "roof": {"slope": 6},
        "adjusterEmail": None,
    }


@pytest.fixture
def sample_related() -> dict[str, list[dict[str, Any]]]:
    return {
        "photos": [{"annotated": True}, {"annotated": False}],
        "supplements": [],
        "inspections": [{"type": "drone"}],
    }


@pytest.fixture
def services(db_path: str, case_index):
    """Fully wired services against a fresh database, installed globally."""
    from services import build_services, set_services

    built = build_services(db_path, case_index=case_index)
    set_services(built)
    yield built
    set_services(None)


@pytest.fixture
def client(services):
    """Test client bound to the per-test services."""
    from fastapi.testclient import TestClient

    from app import app

    with TestClient(app) as test_client:
        yield test_client
