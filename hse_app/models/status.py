"""
HSE Corrective Action Platform
Status model: closed status types for corrective actions and sub-actions.

Types:
    - ParentStatus: corrective action lifecycle (Aborted is a sticky override)
    - ChildStatus:  sub-action lifecycle (Cancelled terminates the child only)
    - ItemKind:     corrective_action | sub_action

Stored values are the display strings ("Not Started", "In Progress", ...).
``parse`` is the only way in from untrusted input and never defaults.
"""

from __future__ import annotations

from enum import Enum

from hse_app.core.exceptions import InvalidStatusValue


def _normalise(raw: str) -> str:
    return "".join(ch for ch in raw.lower() if ch.isalnum())


class _StatusMixin:
    """Shared parsing for both status enums."""

    _ALIASES: dict[str, str] = {}

    @classmethod
    def parse(cls, raw):
        """Parse a status string, raising InvalidStatusValue when unrecognised.

        Accepts the display value ("In Progress"), the member name
        ("IN_PROGRESS"), and compact / snake forms ("InProgress",
        "in_progress"), case-insensitively.
        """
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str) or not raw.strip():
            raise InvalidStatusValue(raw, cls.__name__)
        key = _normalise(raw)
        key = cls._ALIASES.get(key, key)
        for member in cls:
            if key in (_normalise(member.value), _normalise(member.name)):
                return member
        raise InvalidStatusValue(raw, cls.__name__)

    @classmethod
    def values(cls) -> list[str]:
        return [m.value for m in cls]


class ParentStatus(_StatusMixin, str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    ABORTED = "Aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (ParentStatus.COMPLETED, ParentStatus.ABORTED)


class ChildStatus(_StatusMixin, str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ChildStatus.COMPLETED, ChildStatus.CANCELLED)


# Legacy rows spell it "Canceled".
ChildStatus._ALIASES = {"canceled": "cancelled"}


class ItemKind(str, Enum):
    PARENT = "corrective_action"
    CHILD = "sub_action"

    @property
    def status_type(self):
        return ParentStatus if self is ItemKind.PARENT else ChildStatus
