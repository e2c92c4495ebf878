"""
Contract binding.

Pairs a fixed contract address and interface with a Connection and hands
out callable handles for the contract's functions. Binding is a local
construction; no network call is made.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import decode_hex, encode_hex, is_address, to_checksum_address

from ..connection.manager import Connection
from ..recovery.errors import ErrorCategory, ErrorCode, ServiceError
from .abi import ContractInterface, DecodedLog, FunctionSpec


@dataclass(frozen=True)
class ContractBinding:
    """Immutable pairing of address, interface and connection."""

    address: str
    interface: ContractInterface
    connection: Connection

    def function(self, name: str) -> "ContractFunction":
        return ContractFunction(self, self.interface.get_function(name))

    def __getattr__(self, name: str) -> "ContractFunction":
        # Only reached for attributes the dataclass does not define
        interface = self.__dict__.get("interface")
        if name.startswith("_") or interface is None or name not in interface.functions:
            raise AttributeError(name)
        return self.function(name)

    def decode_log(self, raw_log: Mapping[str, Any]) -> DecodedLog:
        return self.interface.decode_log(raw_log)

    def event_topic(self, name: str) -> str:
        return self.interface.get_event(name).topic

    def with_connection(self, connection: Connection) -> "ContractBinding":
        """New binding over the same address and interface."""
        return replace(self, connection=connection)


def bind(
    connection: Connection,
    address: str,
    interface: ContractInterface,
) -> ContractBinding:
    """Bind ``interface`` at ``address`` to ``connection``."""
    if not address or not is_address(address):
        raise ServiceError(
            f"Invalid contract address: {address!r}",
            code=ErrorCode.INVALID_CONTRACT_ADDRESS,
            details={"address": address},
        )
    return ContractBinding(
        address=to_checksum_address(address),
        interface=interface,
        connection=connection,
    )


class ContractFunction:
    """Callable handle for one contract function."""

    def __init__(self, binding: ContractBinding, spec: FunctionSpec):
        self.binding = binding
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    def encode(self, *args: Any) -> str:
        """ABI-encode calldata (selector + arguments) as a hex string."""
        if len(args) != len(self.spec.inputs):
            raise ServiceError(
                f"{self.spec.signature} takes {len(self.spec.inputs)} argument(s), got {len(args)}",
                code=ErrorCode.CONTRACT_CALL_ERROR,
                category=ErrorCategory.CONTRACT,
                retryable=False,
            )
        try:
            encoded = abi_encode(self.spec.input_types, list(args)) if args else b""
        except Exception as e:
            error = ServiceError.wrap(
                e,
                f"Unable to encode arguments for {self.spec.signature}",
                ErrorCode.CONTRACT_CALL_ERROR,
                function=self.spec.name,
            )
            error.category = ErrorCategory.CONTRACT
            error.retryable = False
            raise error from e
        return encode_hex(self.spec.selector + encoded)

    def build_transaction(
        self,
        *args: Any,
        sender: Optional[str] = None,
        value: int = 0,
        gas: Optional[int] = None,
        nonce: Optional[int] = None,
    ) -> Dict[str, Any]:
        tx: Dict[str, Any] = {"to": self.binding.address, "data": self.encode(*args)}
        if sender:
            tx["from"] = to_checksum_address(sender)
        if value:
            tx["value"] = hex(value)
        if gas:
            tx["gas"] = hex(gas)
        if nonce is not None:
            tx["nonce"] = hex(nonce)
        return tx

    async def call(self, *args: Any, block: str = "latest") -> Any:
        """Run the function as an ``eth_call`` and decode its outputs."""
        tx = {"to": self.binding.address, "data": self.encode(*args)}
        raw = await self.binding.connection.provider.call(tx, block)
        return self.decode_output(raw)

    async def transact(
        self,
        *args: Any,
        sender: str,
        value: int = 0,
        gas: Optional[int] = None,
        nonce: Optional[int] = None,
    ) -> str:
        """Submit through the endpoint's signing account; returns the transaction hash."""
        tx = self.build_transaction(*args, sender=sender, value=value, gas=gas, nonce=nonce)
        return await self.binding.connection.provider.send_transaction(tx)

    def decode_output(self, raw: Optional[str]) -> Any:
        outputs = self.spec.output_types
        if not outputs:
            return None
        data = decode_hex(raw or "0x")
        if not data:
            raise ServiceError(
                f"{self.spec.signature} returned no data; is the contract deployed at {self.binding.address}?",
                code=ErrorCode.CONTRACT_CALL_ERROR,
                category=ErrorCategory.CONTRACT,
                retryable=False,
            )
        try:
            values = abi_decode(outputs, data)
        except Exception as e:
            raise ServiceError.wrap(
                e,
                f"Unable to decode output of {self.spec.signature}",
                ErrorCode.CONTRACT_CALL_ERROR,
                function=self.spec.name,
            ) from e
        return values[0] if len(values) == 1 else tuple(values)

    def __repr__(self) -> str:
        return f"<ContractFunction {self.spec.signature} at {self.binding.address}>"


__all__ = ["ContractBinding", "ContractFunction", "bind"]
