"""Configuration, record models and penalty rules."""
