import pytest

from marketplace_chain.logging_config import mask_endpoint, mask_endpoints


@pytest.mark.parametrize(
    "url,expected",
    [
        (
            "https://sepolia.infura.io/v3/0123456789abcdef0123456789abcdef",
            "https://sepolia.infura.io/v3/0123...cdef",
        ),
        ("https://eth-sepolia.g.alchemy.com/v2/shortkey", "https://eth-sepolia.g.alchemy.com/v2/shortkey"),
        ("http://localhost:8545", "http://localhost:8545"),
        ("", ""),
    ],
)
def test_mask_endpoint(url, expected):
    assert mask_endpoint(url) == expected


def test_mask_endpoints_processor():
    event = {"event": "connected", "endpoint": "https://node.example/v3/abcdefabcdefabcdefabcdef", "block": 1}

    masked = mask_endpoints(None, "info", event)

    assert masked["endpoint"] == "https://node.example/v3/abcd...cdef"
    assert masked["block"] == 1
