"""Power supply controls."""
