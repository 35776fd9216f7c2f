"""Recommendation synthesis, storage and explanation."""

from .models import Explanation, Recommendation, RecommendationKind, SimilarCase
from .synthesizer import synthesize

__all__ = [
    "Explanation",
    "Recommendation",
    "RecommendationKind",
    "SimilarCase",
    "synthesize",
]
