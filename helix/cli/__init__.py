"""Command-line interface for triple-helix."""
