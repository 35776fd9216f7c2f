"""Claim Decision Engine Backend Package.

This package provides the FastAPI backend for the claim decision engine,
including:

- Rule DSL, validation and evaluation
- Recommendation synthesis with similar-case evidence
- Outcome recording and effectiveness analytics
- Recommendation explanations

Usage:
    # Development (from project root):
    PYTHONPATH=backend uvicorn app:app --reload --port 8080

    # Production:
    uvicorn app:app --app-dir backend --host 0.0.0.0 --port 8080

Modules:
    app: FastAPI application entry point
    rules: Rule DSL, rule store, rule packs and the evaluator
    claims: Claim source and related entity loading
    similarity: ChromaDB index of past claims
    recommendations: Synthesis, persistence, explanation and the evaluation pipeline
    outcomes: Outcome recording and effectiveness aggregation
    scheduler: APScheduler snapshot refresh
"""

__version__ = "0.1.0"
