"""Ports implemented by adapters."""

from __future__ import annotations

from .copying import DetachedCopyProvider
from .mapping import EntityEntry, MappingEngine, MappingSession
from .notification import ChangeNotification, NotificationSubscriber

__all__ = [
    "ChangeNotification",
    "DetachedCopyProvider",
    "EntityEntry",
    "MappingEngine",
    "MappingSession",
    "NotificationSubscriber",
]
