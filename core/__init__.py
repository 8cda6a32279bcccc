"""Matching engine: normalization, scoring, decisions, retrieval and orchestration."""
