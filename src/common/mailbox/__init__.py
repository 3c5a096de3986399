"""Mailbox records, configuration and notifications shared by the inbox core.

Modules:
    models: Pydantic models for entities, labels and compose payloads
    config: Configuration model, CLI parsing and logging setup
    notifications: Notice models and the notification center
"""

from __future__ import annotations

from src.common.mailbox.config import (
    InboxConfig,
    configure_logging,
    merge_configs,
    validate_config,
)
from src.common.mailbox.models import (
    ALL_CATEGORIES,
    ALL_VIEWS,
    CATEGORY_LABELS,
    SPECIAL_VIEWS,
    Category,
    ComposePayload,
    EffectiveEntity,
    Entity,
    Label,
    normalize_category,
    normalize_view,
)
from src.common.mailbox.notifications import (
    ErrorNotice,
    InfoNotice,
    Notification,
    NotificationCenter,
    SendStatusNotice,
    UndoNotice,
)

__all__ = [
    # Config
    "InboxConfig",
    "configure_logging",
    "merge_configs",
    "validate_config",
    # Models
    "ALL_CATEGORIES",
    "ALL_VIEWS",
    "CATEGORY_LABELS",
    "SPECIAL_VIEWS",
    "Category",
    "ComposePayload",
    "EffectiveEntity",
    "Entity",
    "Label",
    "normalize_category",
    "normalize_view",
    # Notifications
    "ErrorNotice",
    "InfoNotice",
    "Notification",
    "NotificationCenter",
    "SendStatusNotice",
    "UndoNotice",
]
