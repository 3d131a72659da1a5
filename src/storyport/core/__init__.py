"""Core story model, conversions and import/export orchestration."""
