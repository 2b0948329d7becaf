"""Incremental face deduplication and grouping."""
