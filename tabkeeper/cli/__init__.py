"""Command-line interface for tab-keeper."""
