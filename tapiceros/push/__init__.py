"""Push notification delivery for mobile devices."""

from .config import PushConfig, load_push_config
from .providers import (
    DeliveryCounts,
    DisabledPushProvider,
    FirebasePushProvider,
    PushNotification,
    PushProvider,
    create_push_provider,
)
from .templates import NotificationType

__all__ = [
    "DeliveryCounts",
    "DisabledPushProvider",
    "FirebasePushProvider",
    "NotificationType",
    "PushConfig",
    "PushNotification",
    "PushProvider",
    "create_push_provider",
    "load_push_config",
]
