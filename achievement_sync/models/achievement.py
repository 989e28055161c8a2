"""Achievement definition models"""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class CounterKey(str, Enum):
    """Per-user counters an achievement can track"""
    REVIEWS = "total_reviews"
    MESSAGES = "total_messages"
    MUSIC_MINUTES = "total_music_minutes"
    APP_MINUTES = "total_app_minutes"

    @property
    def is_time_based(self) -> bool:
        return self in (CounterKey.MUSIC_MINUTES, CounterKey.APP_MINUTES)


class AchievementCategory(str, Enum):
    """Achievement categories"""
    REVIEWS = "reviews"
    SOCIAL = "social"
    MUSIC = "music"
    TIME = "time"


class AchievementRarity(str, Enum):
    """Achievement rarity levels"""
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class AchievementDefinition(BaseModel):
    """Achievement definition (immutable catalog entry)"""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    icon: str
    target_value: int = Field(..., gt=0)
    counter_key: CounterKey
    category: AchievementCategory
    points: int = Field(..., ge=0)
    rarity: AchievementRarity
