"""Command-line interface for the style oracle."""
