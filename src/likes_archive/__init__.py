"""Likes Archive - resumable archiving of liked posts and their media."""

__version__ = "0.1.0"
