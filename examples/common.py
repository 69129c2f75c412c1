# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Common configuration for the TON co-signing examples.

Environment Variables:
    TONX_API_KEY: API key for TONX JSON-RPC; the seqno lookup is skipped without it
    TONX_NETWORK: "mainnet" or "testnet" (default)
    TON_COSIGN_MAX_INDEX: Derivation indices searched per participant
    TON_COSIGN_WORKERS: Threads used by the index search
    TON_COSIGN_ORDER_BOC: Pending order to authorize, hex or base64
    TON_COSIGN_RAW_TX_HASH: Raw transaction hash every participant signs
"""

import os

# :!:>section_1
TONX_API_KEY = os.getenv("TONX_API_KEY")

TONX_NETWORK = os.getenv("TONX_NETWORK", "testnet")

MAX_INDEX = int(os.getenv("TON_COSIGN_MAX_INDEX", "1000"))

WORKERS = int(os.getenv("TON_COSIGN_WORKERS", "1"))

# A pending transfer order of a multisig wallet
ORDER_BOC = os.getenv(
    "TON_COSIGN_ORDER_BOC",
    "b5ee9c7241010201004800011e00008e388cae08ac0000000100000301006842000d4657ab40e2a465a4"
    "a8b16229e180b483bd4ca12ff56e88288cbc34dbfa4f9f202faf080000000000000000000000000000"
    "d7be5224",
)

RAW_TX_HASH = os.getenv(
    "TON_COSIGN_RAW_TX_HASH",
    "8da63e8b87b37ae43c83787be78b6cb66eb914b3fd487a20fb33ed4ac60a5bc7",
)
# <:!:section_1
