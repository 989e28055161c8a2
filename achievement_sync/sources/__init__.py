"""Authoritative review and message count sources"""
from achievement_sync.sources.base import MessageSource, ReviewSource

__all__ = ["MessageSource", "ReviewSource"]
