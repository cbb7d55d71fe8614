"""Command line interface for aigate."""
