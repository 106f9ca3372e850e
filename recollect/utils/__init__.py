"""Shared helpers (URLs, text, capture settings)."""
