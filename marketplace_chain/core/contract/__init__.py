from .abi import (
    AbiParam,
    ContractInterface,
    DecodedLog,
    EventSpec,
    FunctionSpec,
    load_contract_interface,
)
from .binding import ContractBinding, ContractFunction, bind

__all__ = [
    "AbiParam",
    "ContractInterface",
    "DecodedLog",
    "EventSpec",
    "FunctionSpec",
    "load_contract_interface",
    "ContractBinding",
    "ContractFunction",
    "bind",
]
