"""Command line interface for mvx."""
