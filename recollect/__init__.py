"""Recollect: semantic search over your own browsing history."""
