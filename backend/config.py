"""Shared configuration for the Claim Decision Engine backend.

This module centralizes environment variable access and default values
to prevent drift between modules.
"""

import os

# Database configuration
DB_PATH = os.getenv("DB_PATH", "./data/decision_engine.db")

# ChromaDB configuration (similar-case index)
CHROMA_PERSIST_DIR = os.getenv("CHROMA_PERSIST_DIR", "./data/chroma")
SIMILAR_CASES_K = int(os.getenv("SIMILAR_CASES_K", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Trigger DSL limits
MAX_TRIGGER_DEPTH = int(os.getenv("MAX_TRIGGER_DEPTH", "16"))
MAX_TRIGGER_NODES = int(os.getenv("MAX_TRIGGER_NODES", "256"))

# Rule evaluation fan-out
RULE_EVAL_WORKERS = int(os.getenv("RULE_EVAL_WORKERS", "8"))
PARALLEL_RULE_THRESHOLD = int(os.getenv("PARALLEL_RULE_THRESHOLD", "32"))

# Fetch boundary (claim facts, similar cases)
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "2.0"))

# Outcome recording
OUTCOME_DEDUP_BUCKET_SECONDS = int(os.getenv("OUTCOME_DEDUP_BUCKET_SECONDS", "3600"))

# Confidence feedback
DEFAULT_RULE_PRIOR = float(os.getenv("DEFAULT_RULE_PRIOR", "0.6"))
FEEDBACK_MIN_SAMPLES = int(os.getenv("FEEDBACK_MIN_SAMPLES", "10"))

# Analytics snapshots
METRICS_SNAPSHOT_TTL_SECONDS = int(os.getenv("METRICS_SNAPSHOT_TTL_SECONDS", "30"))
METRICS_REFRESH_CRON = os.getenv("METRICS_REFRESH_CRON", "*/5 * * * *")
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

# API
EVALUATE_RATE_LIMIT = os.getenv("EVALUATE_RATE_LIMIT", "120/minute")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    ).split(",")
    if origin.strip()
]
