"""Command-line tools for temporal_tables."""
