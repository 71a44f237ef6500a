# dealflow/integrations/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol


class CrmError(Exception):
    """Any failed CRM call. status_code is the HTTP status when there was one."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class AssociationRef:
    relation_id: str
    label: str


class CrmGateway(Protocol):
    async def list_opportunities(self, pipeline_id: str) -> list[dict[str, Any]]:
        ...

    async def update_opportunity_stage(self, opportunity_id: str, stage_id: str) -> None:
        ...

    async def update_opportunity_fields(self, opportunity_id: str, fields: Mapping[str, Any]) -> None:
        """Overwrite custom fields on an opportunity, keyed by GHL field key."""
        ...

    async def create_association(self, from_id: str, to_id: str, label: str) -> AssociationRef:
        ...

    async def delete_association(self, relation_id: str) -> None:
        """Missing relations count as deleted."""
        ...

    async def get_contact(self, contact_id: str) -> dict[str, Any]:
        """Full contact record (custom fields included); {} when not found."""
        ...
