"""
Contract interface description.

Parses an ABI into immutable function and event specs and decodes raw
logs emitted by the contract.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from eth_abi import decode as abi_decode
from eth_utils import decode_hex, encode_hex, keccak

from ..recovery.errors import ErrorCategory, ErrorCode, ServiceError


@dataclass(frozen=True)
class AbiParam:
    name: str
    type: str
    indexed: bool = False

    @property
    def is_dynamic(self) -> bool:
        return (
            self.type in ("string", "bytes")
            or self.type.endswith("[]")
            or self.type.startswith("(")
        )


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    inputs: Tuple[AbiParam, ...]
    outputs: Tuple[AbiParam, ...]
    state_mutability: str = "nonpayable"

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p.type for p in self.inputs)})"

    @property
    def selector(self) -> bytes:
        return keccak(text=self.signature)[:4]

    @property
    def input_types(self) -> List[str]:
        return [p.type for p in self.inputs]

    @property
    def output_types(self) -> List[str]:
        return [p.type for p in self.outputs]

    @property
    def is_read_only(self) -> bool:
        return self.state_mutability in ("view", "pure")


@dataclass(frozen=True)
class EventSpec:
    name: str
    inputs: Tuple[AbiParam, ...]
    anonymous: bool = False

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p.type for p in self.inputs)})"

    @property
    def topic(self) -> str:
        return encode_hex(keccak(text=self.signature))

    @property
    def indexed_inputs(self) -> Tuple[AbiParam, ...]:
        return tuple(p for p in self.inputs if p.indexed)

    @property
    def data_inputs(self) -> Tuple[AbiParam, ...]:
        return tuple(p for p in self.inputs if not p.indexed)


@dataclass(frozen=True)
class DecodedLog:
    """A contract log resolved against the interface."""

    event: str
    args: Mapping[str, Any]
    transaction_hash: Optional[str]
    block_number: Optional[int]
    log_index: Optional[int]
    address: Optional[str]
    raw: Mapping[str, Any]


def _canonical_type(param: Mapping[str, Any]) -> str:
    abi_type = param.get("type")
    if not isinstance(abi_type, str) or not abi_type:
        raise ValueError(f"ABI parameter without a type: {dict(param)!r}")
    if abi_type.startswith("tuple"):
        components = param.get("components") or []
        inner = ",".join(_canonical_type(c) for c in components)
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def _params(entries: Sequence[Mapping[str, Any]]) -> Tuple[AbiParam, ...]:
    return tuple(
        AbiParam(
            name=entry.get("name") or f"arg{i}",
            type=_canonical_type(entry),
            indexed=bool(entry.get("indexed", False)),
        )
        for i, entry in enumerate(entries)
    )


def _quantity(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16) if str(value).startswith("0x") else int(value)


class ContractInterface:
    """Ordered, read-only set of callable functions and emittable events."""

    def __init__(
        self,
        functions: Mapping[str, FunctionSpec],
        events: Mapping[str, EventSpec],
        abi: Sequence[Mapping[str, Any]] = (),
    ):
        self._functions = MappingProxyType(dict(functions))
        self._events = MappingProxyType(dict(events))
        self._events_by_topic = MappingProxyType(
            {spec.topic: spec for spec in self._events.values() if not spec.anonymous}
        )
        self._abi = tuple(abi)

    @classmethod
    def from_abi(cls, abi: Union[Sequence[Mapping[str, Any]], Mapping[str, Any]]) -> "ContractInterface":
        """Build an interface from an ABI list or a compiler artifact with an ``abi`` key."""
        if isinstance(abi, Mapping):
            abi = abi.get("abi")  # type: ignore[assignment]
        if not isinstance(abi, (list, tuple)):
            raise ServiceError(
                "Contract ABI must be a list of entries",
                code=ErrorCode.INVALID_ABI,
            )

        functions: Dict[str, FunctionSpec] = {}
        events: Dict[str, EventSpec] = {}
        try:
            for entry in abi:
                kind = entry.get("type", "function")
                if kind == "function":
                    spec = FunctionSpec(
                        name=entry["name"],
                        inputs=_params(entry.get("inputs", [])),
                        outputs=_params(entry.get("outputs", [])),
                        state_mutability=entry.get("stateMutability")
                        or ("view" if entry.get("constant") else "nonpayable"),
                    )
                    # First declaration wins for overloaded names
                    functions.setdefault(spec.name, spec)
                elif kind == "event":
                    spec_event = EventSpec(
                        name=entry["name"],
                        inputs=_params(entry.get("inputs", [])),
                        anonymous=bool(entry.get("anonymous", False)),
                    )
                    events.setdefault(spec_event.name, spec_event)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ServiceError.wrap(e, "Malformed contract ABI", ErrorCode.INVALID_ABI) from e

        return cls(functions, events, abi)

    @property
    def functions(self) -> Mapping[str, FunctionSpec]:
        return self._functions

    @property
    def events(self) -> Mapping[str, EventSpec]:
        return self._events

    @property
    def abi(self) -> Tuple[Mapping[str, Any], ...]:
        return self._abi

    def get_function(self, name: str) -> FunctionSpec:
        spec = self._functions.get(name)
        if spec is None:
            raise ServiceError(
                f"Contract has no function named '{name}'",
                code=ErrorCode.UNKNOWN_FUNCTION,
                details={"function": name, "available": sorted(self._functions)},
            )
        return spec

    def get_event(self, name: str) -> EventSpec:
        spec = self._events.get(name)
        if spec is None:
            raise ServiceError(
                f"Contract has no event named '{name}'",
                code=ErrorCode.UNKNOWN_EVENT,
                details={"event": name, "available": sorted(self._events)},
            )
        return spec

    def event_for_topic(self, topic: str) -> Optional[EventSpec]:
        return self._events_by_topic.get(topic.lower())

    def decode_log(self, raw_log: Mapping[str, Any]) -> DecodedLog:
        """Decode indexed topics and data of a raw ``eth_getLogs`` entry."""
        topics = list(raw_log.get("topics") or [])
        if not topics:
            raise ServiceError(
                "Cannot decode a log without topics",
                code=ErrorCode.CONTRACT_CALL_ERROR,
                details={"log": dict(raw_log)},
                category=ErrorCategory.CONTRACT,
                retryable=False,
            )
        spec = self.event_for_topic(topics[0])
        if spec is None:
            raise ServiceError(
                f"Log topic {topics[0]} does not match any contract event",
                code=ErrorCode.UNKNOWN_EVENT,
                details={"topic": topics[0]},
            )

        try:
            if len(topics) - 1 != len(spec.indexed_inputs):
                raise ValueError(
                    f"expected {len(spec.indexed_inputs)} indexed topics, got {len(topics) - 1}"
                )
            indexed_values = {}
            for param, topic in zip(spec.indexed_inputs, topics[1:]):
                if param.is_dynamic:
                    # Dynamic indexed values are only available as their hash
                    indexed_values[param.name] = topic
                else:
                    indexed_values[param.name] = abi_decode([param.type], decode_hex(topic))[0]

            data_params = spec.data_inputs
            data_values = abi_decode(
                [p.type for p in data_params],
                decode_hex(raw_log.get("data") or "0x"),
            ) if data_params else ()
            data_by_name = {p.name: v for p, v in zip(data_params, data_values)}
        except Exception as e:
            raise ServiceError.wrap(
                e,
                f"Failed to decode {spec.name} log",
                ErrorCode.CONTRACT_CALL_ERROR,
                event=spec.name,
            ) from e

        args = {}
        for param in spec.inputs:
            args[param.name] = indexed_values[param.name] if param.indexed else data_by_name[param.name]

        return DecodedLog(
            event=spec.name,
            args=MappingProxyType(args),
            transaction_hash=raw_log.get("transactionHash"),
            block_number=_quantity(raw_log.get("blockNumber")),
            log_index=_quantity(raw_log.get("logIndex")),
            address=raw_log.get("address"),
            raw=MappingProxyType(dict(raw_log)),
        )


def load_contract_interface(path: Union[str, Path]) -> ContractInterface:
    """Read a compiler artifact or bare ABI list from disk."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            artifact = json.load(fh)
    except (OSError, ValueError) as e:
        raise ServiceError.wrap(
            e,
            f"Unable to read contract ABI from {path}",
            ErrorCode.INVALID_ABI,
            path=str(path),
        ) from e
    return ContractInterface.from_abi(artifact)
