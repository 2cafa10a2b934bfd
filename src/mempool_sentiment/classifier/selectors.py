"""Well-known DEX method selectors, grouped by what they imply about ETH flow.

Direction is always expressed from the caller's point of view with respect
to ETH: swapping ETH for tokens sells ETH, swapping tokens for ETH buys it.
"""

from __future__ import annotations

# ETH goes out of the caller's wallet.
DIRECT_SELL_SELECTORS: dict[str, str] = {
    "0x7ff36ab5": "swapExactETHForTokens",
    "0xfb3bdb41": "swapETHForExactTokens",
    "0xb6f9de95": "swapExactETHForTokensSupportingFeeOnTransferTokens",
    "0x7c025200": "swap (1inch v5)",
    "0x12aa3caf": "swap (1inch v4)",
}

# ETH comes into the caller's wallet.
DIRECT_BUY_SELECTORS: dict[str, str] = {
    "0x18cbafe5": "swapExactTokensForETH",
    "0x4a25d94a": "swapTokensForExactETH",
    "0x791ac947": "swapExactTokensForETHSupportingFeeOnTransferTokens",
    "0xdb3e2198": "exactOutputSingle (Uniswap V3)",
    "0xf28c0498": "exactOutput (Uniswap V3)",
}

# Direction depends on whether ETH value is attached.
GENERIC_SWAP_SELECTORS: dict[str, str] = {
    "0x38ed1739": "swapExactTokensForTokens",
    "0x8803dbee": "swapTokensForExactTokens",
    "0x5c11d795": "swapExactTokensForTokensSupportingFeeOnTransferTokens",
    "0x414bf389": "exactInputSingle (Uniswap V3)",
    "0xc04b8d59": "exactInput (Uniswap V3)",
    "0x5ae401dc": "multicall (deadline)",
    "0xac9650d8": "multicall",
    "0xe449022e": "uniswapV3Swap",
}


def describe_selector(selector: str | None) -> str | None:
    """Return the known function name for a selector, if any."""
    if selector is None:
        return None
    key = selector.lower()
    for table in (DIRECT_SELL_SELECTORS, DIRECT_BUY_SELECTORS, GENERIC_SWAP_SELECTORS):
        if key in table:
            return table[key]
    return None
