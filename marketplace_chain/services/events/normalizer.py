"""
Normalization of chain-native values.

Converts raw integers, addresses and bytes decoded from logs into the
string forms downstream stores and audit sinks consume directly.
"""

from decimal import Decimal
from typing import Any, Mapping

from eth_utils import encode_hex, to_checksum_address

from ...constants import ETHER_DECIMALS
from ...core.contract.abi import DecodedLog


def format_units(value: int, decimals: int = ETHER_DECIMALS) -> str:
    """Render a smallest-unit integer in human units.

    Matches ethers' ``formatUnits``: at least one fractional digit, trailing
    zeros trimmed. ``format_units(10**18) == "1.0"``.
    """
    value = int(value)
    if decimals < 0:
        raise ValueError("decimals must not be negative")
    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(value), 10**decimals)
    fraction_str = str(fraction).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{sign}{whole}.{fraction_str or '0'}"


def format_ether(value: int) -> str:
    return format_units(value, ETHER_DECIMALS)


def parse_units(value: str, decimals: int = ETHER_DECIMALS) -> int:
    """Inverse of :func:`format_units`; rejects values finer than one unit."""
    amount = Decimal(str(value)) * (Decimal(10) ** decimals)
    if amount != amount.to_integral_value():
        raise ValueError(f"{value} has more than {decimals} decimal places")
    return int(amount)


def to_decimal_string(value: Any) -> str:
    return str(int(value))


def to_address(value: Any) -> str:
    return to_checksum_address(value)


def to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return encode_hex(value)
    return str(value)


def log_metadata(decoded: DecodedLog) -> Mapping[str, str]:
    """Transaction hash, block number and log index as strings."""
    return {
        "transaction_hash": to_hex(decoded.transaction_hash or ""),
        "block_number": "" if decoded.block_number is None else str(decoded.block_number),
        "log_index": "" if decoded.log_index is None else str(decoded.log_index),
    }
