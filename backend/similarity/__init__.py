"""Similar-case retrieval for recommendation confidence."""

from .case_index import CaseIndex, embed_facts

__all__ = ["CaseIndex", "embed_facts"]
