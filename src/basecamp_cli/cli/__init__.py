"""Command-line interface for basecamp-cli."""
