"""SQLAlchemy ORM models for the voice backend.

All models are exported from this module for convenient imports:
    from voice_backend.models import User, SubscriptionPlan, ...

Models are organized by domain:
- user.py: User (identity, preferences, token balance)
- subscription.py: SubscriptionPlan, UserSubscription
- usage.py: TokenUsageRecord (append-only usage log)
"""

from voice_backend.models.base import Base
from voice_backend.models.subscription import SubscriptionPlan, UserSubscription
from voice_backend.models.usage import TokenUsageRecord
from voice_backend.models.user import User

__all__ = [
    "Base",
    "SubscriptionPlan",
    "TokenUsageRecord",
    "User",
    "UserSubscription",
]
