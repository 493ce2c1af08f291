"""Application state and orchestration."""
