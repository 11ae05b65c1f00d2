"""Command-line interface for crew-sync."""
