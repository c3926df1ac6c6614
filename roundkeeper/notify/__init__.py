"""Lifecycle notifications: post formatting and broadcast."""

from __future__ import annotations

from roundkeeper.notify.broadcaster import XBroadcaster
from roundkeeper.notify.publisher import NotificationPublisher

__all__ = [
    "NotificationPublisher",
    "XBroadcaster",
]
