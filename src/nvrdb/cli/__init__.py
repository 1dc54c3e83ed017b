"""Command-line interface for nvrdb."""
