"""Command-line interface for buddian."""
