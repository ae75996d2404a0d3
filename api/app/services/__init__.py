from . import (
    recommendation_service,
    taste_decay_service,
    taste_profile_service,
    usage_service,
    user_service,
)

__all__ = [
    "recommendation_service",
    "taste_decay_service",
    "taste_profile_service",
    "usage_service",
    "user_service",
]
