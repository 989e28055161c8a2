"""
Achievement catalog for achievement-sync

The catalog is static data; evaluation and aggregation live in
achievement_sync.services.
"""

from achievement_sync.gamification.catalog import (
    ACHIEVEMENTS,
    catalog_size,
    get_achievement_definition,
    get_achievement_definitions,
)

__all__ = [
    "ACHIEVEMENTS",
    "catalog_size",
    "get_achievement_definition",
    "get_achievement_definitions",
]
