"""Command-line tools for Fleetwarden."""
