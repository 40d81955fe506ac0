"""Port for publishing change notifications after a save."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from entitygate.domain.model import EntityState


@dataclass(frozen=True, slots=True)
class ChangeNotification:
    shape: str
    entity: object
    state: EntityState


@runtime_checkable
class NotificationSubscriber(Protocol):
    def publish(self, notification: ChangeNotification) -> None: ...
