"""Command-line interface for Aria."""
