"""
Tests for contract interface parsing and binding
"""

import dataclasses

import pytest
from eth_abi import encode as abi_encode
from eth_utils import encode_hex, keccak, to_checksum_address

from marketplace_chain.core.connection.manager import Connection
from marketplace_chain.core.contract import ContractInterface, bind, load_contract_interface
from marketplace_chain.core.recovery import ErrorCode, ServiceError

from tests.fakes import BUYER, CONTRACT, ONE_ETHER, SELLER, FakeChainProvider, listed_log, purchase_log


# =============================================================================
# Interface Tests
# =============================================================================

class TestContractInterface:

    def test_bundled_abi_lists_functions_and_events(self, interface):
        assert set(interface.functions) == {"listData", "purchaseData", "getListing", "listingCount"}
        assert set(interface.events) == {"DataListed", "DataPurchased"}

    def test_function_selector(self, interface):
        spec = interface.get_function("purchaseData")

        assert spec.signature == "purchaseData(uint256)"
        assert spec.selector == keccak(text="purchaseData(uint256)")[:4]
        assert spec.is_read_only is False
        assert interface.get_function("listingCount").is_read_only is True

    def test_event_topic(self, interface):
        spec = interface.get_event("DataPurchased")

        assert spec.topic == encode_hex(keccak(text="DataPurchased(uint256,address,address,uint256)"))
        assert [p.name for p in spec.indexed_inputs] == ["id", "buyer", "seller"]

    def test_unknown_names(self, interface):
        with pytest.raises(ServiceError) as exc_info:
            interface.get_function("withdraw")
        assert exc_info.value.code == ErrorCode.UNKNOWN_FUNCTION

        with pytest.raises(ServiceError) as exc_info:
            interface.get_event("Transfer")
        assert exc_info.value.code == ErrorCode.UNKNOWN_EVENT

    def test_accepts_bare_abi_list(self):
        interface = ContractInterface.from_abi([
            {"type": "function", "name": "ping", "inputs": [], "outputs": [], "stateMutability": "pure"},
        ])
        assert interface.get_function("ping").is_read_only

    def test_tuple_types_are_canonical(self):
        interface = ContractInterface.from_abi([{
            "type": "function",
            "name": "batch",
            "inputs": [{
                "name": "items",
                "type": "tuple[]",
                "components": [{"name": "id", "type": "uint256"}, {"name": "to", "type": "address"}],
            }],
            "outputs": [],
        }])
        assert interface.get_function("batch").signature == "batch((uint256,address)[])"

    @pytest.mark.parametrize("abi", [{"abi": "nope"}, "not a list", [{"type": "function"}]])
    def test_malformed_abi(self, abi):
        with pytest.raises(ServiceError) as exc_info:
            ContractInterface.from_abi(abi)
        assert exc_info.value.code == ErrorCode.INVALID_ABI

    def test_missing_artifact_file(self, tmp_path):
        with pytest.raises(ServiceError) as exc_info:
            load_contract_interface(tmp_path / "missing.json")
        assert exc_info.value.code == ErrorCode.INVALID_ABI

    def test_interface_is_read_only(self, interface):
        with pytest.raises(TypeError):
            interface.functions["evil"] = None


# =============================================================================
# Log Decoding Tests
# =============================================================================

class TestLogDecoding:

    def test_decode_purchase(self, interface):
        decoded = interface.decode_log(purchase_log(interface, 7, ONE_ETHER, block=12, log_index=3))

        assert decoded.event == "DataPurchased"
        assert decoded.args["id"] == 7
        assert to_checksum_address(decoded.args["buyer"]) == to_checksum_address(BUYER)
        assert to_checksum_address(decoded.args["seller"]) == to_checksum_address(SELLER)
        assert decoded.args["price"] == ONE_ETHER
        assert decoded.block_number == 12
        assert decoded.log_index == 3
        assert decoded.transaction_hash == "0x" + "ab" * 32

    def test_decode_listing_with_string_data(self, interface):
        decoded = interface.decode_log(listed_log(interface, 2, 5 * ONE_ETHER, "ipfs://bafy", block=9))

        assert decoded.event == "DataListed"
        assert decoded.args["dataHash"] == "ipfs://bafy"
        assert decoded.args["price"] == 5 * ONE_ETHER

    def test_unknown_topic(self, interface):
        log = purchase_log(interface, 1, 1, block=1)
        log["topics"][0] = encode_hex(keccak(text="Transfer(address,address,uint256)"))

        with pytest.raises(ServiceError) as exc_info:
            interface.decode_log(log)
        assert exc_info.value.code == ErrorCode.UNKNOWN_EVENT

    def test_topic_count_mismatch(self, interface):
        log = purchase_log(interface, 1, 1, block=1)
        log["topics"] = log["topics"][:2]

        with pytest.raises(ServiceError) as exc_info:
            interface.decode_log(log)
        assert exc_info.value.code == ErrorCode.CONTRACT_CALL_ERROR

    def test_log_without_topics(self, interface):
        with pytest.raises(ServiceError):
            interface.decode_log({"topics": [], "data": "0x"})


# =============================================================================
# Binding Tests
# =============================================================================

class TestContractBinding:

    def test_bind_checksums_address(self, binding):
        assert binding.address == to_checksum_address(CONTRACT)

    @pytest.mark.parametrize("address", ["", "0x1234", "not-an-address", None])
    def test_invalid_address(self, connection, interface, address):
        with pytest.raises(ServiceError) as exc_info:
            bind(connection, address, interface)
        assert exc_info.value.code == ErrorCode.INVALID_CONTRACT_ADDRESS

    def test_bind_makes_no_network_call(self, provider, connection, interface):
        bind(connection, CONTRACT, interface)
        assert provider.calls == []
        assert provider.sent == []

    def test_binding_is_immutable(self, binding):
        with pytest.raises(dataclasses.FrozenInstanceError):
            binding.address = SELLER

    def test_with_connection(self, binding, interface):
        other = Connection(endpoint_url="http://other:8545", provider=FakeChainProvider("http://other:8545"), ready=True)

        rebound = binding.with_connection(other)

        assert rebound.connection is other
        assert rebound.address == binding.address
        assert rebound.interface is interface
        assert binding.connection is not other

    def test_attribute_access_returns_function(self, binding):
        assert binding.purchaseData.name == "purchaseData"
        with pytest.raises(AttributeError):
            binding.withdraw


class TestContractFunction:

    def test_encode(self, binding):
        data = binding.function("purchaseData").encode(7)

        expected = keccak(text="purchaseData(uint256)")[:4] + abi_encode(["uint256"], [7])
        assert data == encode_hex(expected)

    def test_encode_wrong_arity(self, binding):
        with pytest.raises(ServiceError) as exc_info:
            binding.function("purchaseData").encode()
        assert exc_info.value.code == ErrorCode.CONTRACT_CALL_ERROR
        assert exc_info.value.retryable is False

    def test_encode_bad_argument(self, binding):
        with pytest.raises(ServiceError) as exc_info:
            binding.function("purchaseData").encode("seven")
        assert exc_info.value.retryable is False

    def test_build_transaction(self, binding):
        tx = binding.function("purchaseData").build_transaction(7, sender=BUYER, value=ONE_ETHER)

        assert tx["to"] == binding.address
        assert tx["from"] == to_checksum_address(BUYER)
        assert tx["value"] == hex(ONE_ETHER)

    @pytest.mark.asyncio
    async def test_call_decodes_single_output(self, binding, provider):
        provider.call_results.append(encode_hex(abi_encode(["uint256"], [42])))

        assert await binding.function("listingCount").call() == 42
        assert provider.calls[0]["to"] == binding.address

    @pytest.mark.asyncio
    async def test_call_decodes_tuple_output(self, binding, provider):
        provider.call_results.append(encode_hex(abi_encode(
            ["address", "uint256", "string", "bool"],
            [SELLER, ONE_ETHER, "ipfs://bafy", True],
        )))

        owner, price, data_hash, active = await binding.function("getListing").call(1)

        assert to_checksum_address(owner) == to_checksum_address(SELLER)
        assert (price, data_hash, active) == (ONE_ETHER, "ipfs://bafy", True)

    @pytest.mark.asyncio
    async def test_call_with_empty_result(self, binding, provider):
        provider.call_results.append("0x")

        with pytest.raises(ServiceError) as exc_info:
            await binding.function("listingCount").call()
        assert exc_info.value.code == ErrorCode.CONTRACT_CALL_ERROR

    @pytest.mark.asyncio
    async def test_transact(self, binding, provider):
        provider.send_results.append("0xfeed")

        tx_hash = await binding.function("purchaseData").transact(7, sender=BUYER, value=ONE_ETHER)

        assert tx_hash == "0xfeed"
        assert provider.sent[0]["data"] == binding.function("purchaseData").encode(7)
