"""API route modules."""

from likes_archive.api.routes import downloads, feed, health

__all__ = ["downloads", "feed", "health"]
