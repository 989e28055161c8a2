"""
Achievement Catalog

Immutable, process-wide table of every achievement a user can earn.
Each entry pairs one tracked counter with a target threshold and a
point/category/rarity reward. The catalog carries no state and may be
shared freely between tasks.
"""

from typing import Optional

from achievement_sync.models.achievement import (
    AchievementCategory,
    AchievementDefinition,
    AchievementRarity,
    CounterKey,
)

ACHIEVEMENTS: tuple[AchievementDefinition, ...] = (
    # Reviews
    AchievementDefinition(
        id="first_review",
        title="First Critique",
        description="Write your first review",
        icon="star",
        target_value=1,
        counter_key=CounterKey.REVIEWS,
        category=AchievementCategory.REVIEWS,
        points=10,
        rarity=AchievementRarity.COMMON,
    ),
    AchievementDefinition(
        id="review_enthusiast",
        title="Review Enthusiast",
        description="Write 10 reviews",
        icon="stars",
        target_value=10,
        counter_key=CounterKey.REVIEWS,
        category=AchievementCategory.REVIEWS,
        points=50,
        rarity=AchievementRarity.COMMON,
    ),
    AchievementDefinition(
        id="review_master",
        title="Master Critic",
        description="Write 50 reviews",
        icon="trophy",
        target_value=50,
        counter_key=CounterKey.REVIEWS,
        category=AchievementCategory.REVIEWS,
        points=200,
        rarity=AchievementRarity.RARE,
    ),
    AchievementDefinition(
        id="review_legend",
        title="Review Legend",
        description="Write 100 reviews",
        icon="award",
        target_value=100,
        counter_key=CounterKey.REVIEWS,
        category=AchievementCategory.REVIEWS,
        points=500,
        rarity=AchievementRarity.EPIC,
    ),
    # Social
    AchievementDefinition(
        id="first_message",
        title="First Conversation",
        description="Send your first message",
        icon="message-circle",
        target_value=1,
        counter_key=CounterKey.MESSAGES,
        category=AchievementCategory.SOCIAL,
        points=5,
        rarity=AchievementRarity.COMMON,
    ),
    AchievementDefinition(
        id="social_butterfly",
        title="Social Butterfly",
        description="Send 50 messages",
        icon="users",
        target_value=50,
        counter_key=CounterKey.MESSAGES,
        category=AchievementCategory.SOCIAL,
        points=100,
        rarity=AchievementRarity.RARE,
    ),
    # Music listening time (minutes)
    AchievementDefinition(
        id="music_lover",
        title="Music Lover",
        description="Listen to 60 minutes of music",
        icon="music",
        target_value=60,
        counter_key=CounterKey.MUSIC_MINUTES,
        category=AchievementCategory.MUSIC,
        points=30,
        rarity=AchievementRarity.COMMON,
    ),
    AchievementDefinition(
        id="music_addict",
        title="Music Addict",
        description="Listen to 10 hours of music",
        icon="headphones",
        target_value=600,
        counter_key=CounterKey.MUSIC_MINUTES,
        category=AchievementCategory.MUSIC,
        points=150,
        rarity=AchievementRarity.RARE,
    ),
    # App usage time (minutes)
    AchievementDefinition(
        id="frequent_user",
        title="Frequent User",
        description="Use the app for 2 hours",
        icon="clock",
        target_value=120,
        counter_key=CounterKey.APP_MINUTES,
        category=AchievementCategory.TIME,
        points=25,
        rarity=AchievementRarity.COMMON,
    ),
    AchievementDefinition(
        id="power_user",
        title="Power User",
        description="Use the app for 20 hours",
        icon="zap",
        target_value=1200,
        counter_key=CounterKey.APP_MINUTES,
        category=AchievementCategory.TIME,
        points=200,
        rarity=AchievementRarity.EPIC,
    ),
)

_BY_ID: dict[str, AchievementDefinition] = {a.id: a for a in ACHIEVEMENTS}

if len(_BY_ID) != len(ACHIEVEMENTS):
    raise ValueError("Achievement ids must be unique across the catalog")


def get_achievement_definitions() -> list[AchievementDefinition]:
    """All achievement definitions, in catalog order"""
    return list(ACHIEVEMENTS)


def get_achievement_definition(achievement_id: str) -> Optional[AchievementDefinition]:
    """Look up one definition; None for unknown or retired ids"""
    return _BY_ID.get(achievement_id)


def catalog_size() -> int:
    return len(ACHIEVEMENTS)
