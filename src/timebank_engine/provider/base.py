"""Protocol and value types for time-tracking providers.

The ingestor talks to providers only through ``TimeTrackingProvider``; the
provider knows nothing about tenants.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


@dataclass(frozen=True)
class ExternalUser:
    """A user as listed by the provider workspace."""

    id: str
    name: str = ""
    email: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ExternalUser:
        return cls(
            id=_text(data.get("id")),
            name=_text(data.get("name")),
            email=_text(data.get("email")),
        )


@dataclass(frozen=True)
class ExternalTimeEntry:
    """One tracked time segment, timestamps kept as the provider sent them."""

    id: str
    user_id: str
    start: str
    end: str = ""
    duration: str = ""
    description: str = ""
    project_id: str = ""
    task_id: str = ""
    billable: bool = False
    tag_ids: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ExternalTimeEntry:
        interval = data.get("timeInterval") or {}
        return cls(
            id=_text(data.get("id")),
            user_id=_text(data.get("userId")),
            start=_text(interval.get("start")),
            end=_text(interval.get("end")),
            duration=_text(interval.get("duration")),
            description=_text(data.get("description")),
            project_id=_text(data.get("projectId")),
            task_id=_text(data.get("taskId")),
            billable=bool(data.get("billable")),
            tag_ids=tuple(str(t) for t in (data.get("tagIds") or [])),
            raw=dict(data),
        )


class TimeTrackingProvider(Protocol):
    """Read-only access to a provider workspace."""

    async def list_users(self, workspace_id: str) -> list[ExternalUser]:
        """Return every user in the workspace, all pages."""
        ...

    async def list_time_entries(
        self,
        workspace_id: str,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> list[ExternalTimeEntry]:
        """Return the user's entries starting in ``[start, end)``, all pages."""
        ...
