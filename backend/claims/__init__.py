"""Claim storage and retrieval for rule evaluation."""

from .source import ClaimBundle, ClaimSource

__all__ = ["ClaimBundle", "ClaimSource"]
