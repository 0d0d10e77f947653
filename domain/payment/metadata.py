"""
Typed metadata attached to payments and transactions.

Entries are stored as a JSON list and discriminated by ``kind`` so readers
never have to guess the shape of a free-form blob.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class GatewayPayload(BaseModel):
    """Raw gateway object captured at a point in the lifecycle."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["gateway_payload"] = "gateway_payload"
    source: Literal["order", "payment", "webhook"]
    payload: dict[str, Any] = Field(default_factory=dict)


class OrderContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["order_context"] = "order_context"
    receipt: str
    package_type: Optional[str] = None
    country: Optional[str] = None


class RefundNote(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["refund_note"] = "refund_note"
    reason: Optional[str] = None
    actor: Optional[str] = None
    gateway_refund_id: Optional[str] = None
    reversed_credits: int = 0
    shortfall_credits: int = 0


MetadataEntry = Annotated[
    Union[GatewayPayload, OrderContext, RefundNote],
    Field(discriminator="kind"),
]

_entries = TypeAdapter(list[MetadataEntry])


def load_metadata(raw: Any) -> list[MetadataEntry]:
    if not raw:
        return []
    return _entries.validate_python(raw)


def dump_metadata(entries: list[MetadataEntry]) -> list[dict[str, Any]]:
    return _entries.dump_python(list(entries or []), mode="json")
