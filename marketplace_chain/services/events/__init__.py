"""
Event Subscriptions

Polls the connection for new blocks and contract logs and delivers
normalized, typed records to registered handlers.
"""

from .models import (
    EVENT_RECORDS,
    ContractEventRecord,
    DataListedRecord,
    DataPurchasedRecord,
    NormalizedEvent,
    Subscription,
    SubscriptionKind,
    normalize_event,
    parse_event_record,
)
from .normalizer import format_ether, format_units, parse_units
from .subscriber import EventSubscriber

__all__ = [
    # Models
    "EVENT_RECORDS",
    "ContractEventRecord",
    "DataListedRecord",
    "DataPurchasedRecord",
    "NormalizedEvent",
    "Subscription",
    "SubscriptionKind",
    "normalize_event",
    "parse_event_record",
    # Normalization
    "format_ether",
    "format_units",
    "parse_units",
    # Subscriber
    "EventSubscriber",
]
