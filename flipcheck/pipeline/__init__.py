"""Comps pipeline: categories, relevance, conditions, cache and aggregation."""
