"""Fact extraction: claim records to flat, path-addressable facts.

A claim with related entities such as::

    claim = {"status": "new", "depreciation": {"total": 1200}}
    related = {"photos": [{"annotated": True}, {"annotated": False}]}

becomes::

    claim.status            -> "new"
    claim.depreciation.total -> 1200
    photos.length           -> 2
    photos[0].annotated     -> True
    photos[1].annotated     -> False
    photos.annotated        -> [True, False]

``None`` values are dropped so they resolve to ``ABSENT``.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from .models import FactMap

CLAIM_PREFIX = "claim"

_SCALARS = (str, int, float, bool)


def _normalize_scalar(value: Any) -> Any:
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _is_scalar(value: Any) -> bool:
    return value is not None and not isinstance(value, (Mapping, list, tuple))


def _flatten(prefix: str, value: Any, out: dict[str, Any]) -> None:
    if value is None:
        return

    if isinstance(value, Mapping):
        for key, child in value.items():
            _flatten(f"{prefix}.{key}", child, out)
        return

    if isinstance(value, (list, tuple)):
        out[f"{prefix}.length"] = len(value)
        if all(_is_scalar(item) or item is None for item in value):
            out[prefix] = [_normalize_scalar(item) for item in value if item is not None]
        for index, item in enumerate(value):
            _flatten(f"{prefix}[{index}]", item, out)
        _project_fields(prefix, value, out)
        return

    out[prefix] = _normalize_scalar(value)


def _project_fields(prefix: str, items: Iterable[Any], out: dict[str, Any]) -> None:
    """Expose ``prefix.field`` as the list of that field's values across items."""
    projected: dict[str, list[Any]] = {}
    for item in items:
        if not isinstance(item, Mapping):
            continue
        for key, child in item.items():
            values = projected.setdefault(str(key), [])
            if _is_scalar(child):
                values.append(_normalize_scalar(child))
    for key, values in projected.items():
        # Direct fields and the length aggregate take precedence.
        out.setdefault(f"{prefix}.{key}", values)


def extract_facts(
    claim: Mapping[str, Any],
    related: Mapping[str, Any] | None = None,
    org_id: str | None = None,
    unavailable: Iterable[str] = (),
) -> FactMap:
    """Build a FactMap for one claim.

    Args:
        claim: Raw claim record.
        related: Related entity collections keyed by name
            (``supplements``, ``photos``, ``inspections`` ...).
        org_id: Owning organization; defaults to ``claim["org_id"]``.
        unavailable: Names of related entities that failed to load.

    Returns:
        A FactMap whose predicates over unavailable entities never match.
    """
    unavailable = frozenset(unavailable)
    facts: dict[str, Any] = {}

    _flatten(CLAIM_PREFIX, claim, facts)

    for name in sorted((related or {}).keys()):
        if name in unavailable:
            continue
        _flatten(name, related[name], facts)

    return FactMap(
        facts,
        org_id=org_id if org_id is not None else claim.get("org_id"),
        unavailable=unavailable,
    )
