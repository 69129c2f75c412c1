# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
TON Co-Signer - co-signing core for M-of-N TON multisig wallets.

Every participant of a multisig wallet holds their own recovery phrase, kept
in a TON-native wallet, a hardware wallet or a multi-chain software wallet.
This package turns those phrases into signing keys, collects one signature per
participant over a pending order and assembles the canonical authorization
message the wallet contract accepts.

Modules:
- **mnemonic**: Key resolution per derivation scheme, with bounded index search
- **account**: Scoped signers producing Ed25519 signatures over 32-byte digests
- **authorization**: Canonical signature chain and final message encoding
- **cosigner**: The co-signing round state machine
- **address**: Wallet address parsing, formatting and derivation
- **cells**: Bag-of-cells input handling on top of ``tonsdk.boc``
- **async_client**: JSON-RPC client for seqno and get-method queries
- **cli**: Interactive and scripted command-line front end

Quick Start:
    A 2-of-2 round::

        from ton_cosign.address import WalletAddress
        from ton_cosign.authorization import PendingOrder
        from ton_cosign.cosigner import CoSigningSession, Participant
        from ton_cosign.mnemonic import DerivationScheme

        session = CoSigningSession(
            WalletAddress.from_str(multisig_address),
            threshold=2,
            digest=bytes.fromhex(raw_tx_hash),
            order=PendingOrder.from_boc(order_boc),
        )
        message = session.run([
            Participant(DerivationScheme.STANDARD, phrase_a, address_a, 0),
            Participant(DerivationScheme.LEDGER, phrase_b, address_b, 1),
        ])
        print(message.to_base64())
"""
