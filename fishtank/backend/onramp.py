"""Deep link into the hosted onramp for buying refill currency."""

from __future__ import annotations

import json
from urllib.parse import urlencode

from .security import is_address


ONRAMP_BASE_URL = "https://pay.coinbase.com/buy/select-asset"


def build_onramp_url(address: str, app_id: str, network: str = "base", asset: str = "USDC") -> str:
    if not is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    params = {
        "addresses": json.dumps({address: [network]}, separators=(",", ":")),
        "assets": json.dumps([asset], separators=(",", ":")),
        "defaultAsset": asset,
        "defaultNetwork": network,
        "defaultPaymentMethod": "CARD",
        "appId": app_id,
    }
    return f"{ONRAMP_BASE_URL}?{urlencode(params)}"
