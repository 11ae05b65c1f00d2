"""Reference hub server that HTTP clients sync against."""

from crew_sync.server.app import create_app

__all__ = ["create_app"]
