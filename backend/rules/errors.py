"""Error taxonomy for the decision engine."""

from __future__ import annotations


class DecisionEngineError(Exception):
    """Base exception for decision engine errors."""


class RuleValidationError(DecisionEngineError):
    """A rule document failed validation at save time.

    ``path`` points at the offending node, e.g. ``trigger.all[1].op``.
    """

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(f"{path}: {message}" if path else message)
        self.message = message
        self.path = path


class PartialDataError(DecisionEngineError):
    """A related entity could not be loaded for a claim."""

    def __init__(self, message: str, entity: str, claim_id: str | None = None) -> None:
        super().__init__(message)
        self.entity = entity
        self.claim_id = claim_id


class TenantIsolationViolation(DecisionEngineError):
    """A rule, claim or outcome reference crossed an organization boundary."""

    def __init__(self, message: str, expected_org: str | None, actual_org: str | None) -> None:
        super().__init__(message)
        self.expected_org = expected_org
        self.actual_org = actual_org


class DuplicateOutcomeError(DecisionEngineError):
    """An outcome with the same dedup key was already recorded."""

    def __init__(self, dedup_key: str) -> None:
        super().__init__(f"Outcome already recorded: {dedup_key}")
        self.dedup_key = dedup_key


class NotFoundError(DecisionEngineError):
    """A referenced rule, claim or recommendation does not exist."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(f"{resource_type} not found: {resource_id}")
        self.resource_type = resource_type
        self.resource_id = resource_id
