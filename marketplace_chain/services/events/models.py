"""
Event Subscription Models

Typed, normalized records for each known contract event, plus the
subscription entries held by the subscriber.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Awaitable, Callable, Dict, Literal, Type, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from ...core.contract.abi import DecodedLog
from ...core.recovery.errors import ErrorCode, ServiceError
from .normalizer import format_ether, log_metadata, to_address, to_decimal_string, to_hex


class SubscriptionKind(str, Enum):
    BLOCK = "block"
    CONTRACT_EVENT = "contract_event"


class ContractEventRecord(BaseModel):
    """Fields shared by every normalized contract event."""

    model_config = ConfigDict(frozen=True)

    event: str
    transaction_hash: str
    block_number: str = ""
    log_index: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


class DataPurchasedRecord(ContractEventRecord):
    """A buyer paid for a data listing."""

    event: Literal["DataPurchased"] = "DataPurchased"
    id: str
    buyer: str
    seller: str
    price: str  # ether-denominated

    @classmethod
    def from_log(cls, decoded: DecodedLog) -> "DataPurchasedRecord":
        args = decoded.args
        return cls(
            id=to_decimal_string(args["id"]),
            buyer=to_address(args["buyer"]),
            seller=to_address(args["seller"]),
            price=format_ether(args["price"]),
            **log_metadata(decoded),
        )


class DataListedRecord(ContractEventRecord):
    """A data owner published a listing."""

    event: Literal["DataListed"] = "DataListed"
    id: str
    owner: str
    price: str  # ether-denominated
    data_hash: str

    @classmethod
    def from_log(cls, decoded: DecodedLog) -> "DataListedRecord":
        args = decoded.args
        return cls(
            id=to_decimal_string(args["id"]),
            owner=to_address(args["owner"]),
            price=format_ether(args["price"]),
            data_hash=to_hex(args["dataHash"]),
            **log_metadata(decoded),
        )


# Known event names -> record type. Registration of anything else is rejected.
EVENT_RECORDS: Dict[str, Type[Union[DataPurchasedRecord, DataListedRecord]]] = {
    "DataPurchased": DataPurchasedRecord,
    "DataListed": DataListedRecord,
}

NormalizedEvent = Annotated[
    Union[DataPurchasedRecord, DataListedRecord],
    Field(discriminator="event"),
]

_normalized_event_adapter: TypeAdapter[NormalizedEvent] = TypeAdapter(NormalizedEvent)


def parse_event_record(data: Dict[str, Any]) -> NormalizedEvent:
    """Rebuild a typed record from its dict form (e.g. after a round trip through a store)."""
    return _normalized_event_adapter.validate_python(data)


def normalize_event(name: str, decoded: DecodedLog) -> NormalizedEvent:
    """Build the typed record registered for ``name`` from a decoded log."""
    record_type = EVENT_RECORDS.get(name)
    if record_type is None:
        raise ServiceError(
            f"No record type registered for event '{name}'",
            code=ErrorCode.UNKNOWN_EVENT,
            details={"event": name, "known": sorted(EVENT_RECORDS)},
        )
    return record_type.from_log(decoded)


BlockHandler = Callable[[int], Union[None, Awaitable[None]]]
EventHandler = Callable[[Any], Union[None, Awaitable[None]]]


class Subscription(BaseModel):
    """A standing registration of a handler against one notification name."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: SubscriptionKind
    name: str
    handler: Any = Field(exclude=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def handler_name(self) -> str:
        return getattr(self.handler, "__qualname__", None) or repr(self.handler)
