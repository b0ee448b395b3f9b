import json
from urllib.parse import parse_qs, urlparse

import pytest

from fishtank.backend.onramp import ONRAMP_BASE_URL, build_onramp_url

ALICE = "0x742d35Cc6651Bc8e3aF8b4f2cFE41d8b7B7e9B3c"


def test_build_onramp_url_sets_expected_params() -> None:
    url = build_onramp_url(ALICE, app_id="fishtank-test")

    parsed = urlparse(url)
    params = {key: values[0] for key, values in parse_qs(parsed.query).items()}

    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == ONRAMP_BASE_URL
    assert json.loads(params["addresses"]) == {ALICE: ["base"]}
    assert json.loads(params["assets"]) == ["USDC"]
    assert params["defaultAsset"] == "USDC"
    assert params["defaultNetwork"] == "base"
    assert params["defaultPaymentMethod"] == "CARD"
    assert params["appId"] == "fishtank-test"


def test_build_onramp_url_rejects_bad_address() -> None:
    with pytest.raises(ValueError):
        build_onramp_url("not-an-address", app_id="fishtank-test")
