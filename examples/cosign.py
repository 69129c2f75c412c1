# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

import asyncio

from tonsdk.crypto import mnemonic_new

from ton_cosign.address import WalletAddress
from ton_cosign.async_client import ApiError, TonxClient
from ton_cosign.authorization import AuthorizationPayload, PendingOrder
from ton_cosign.cosigner import CoSigningSession, Participant
from ton_cosign.mnemonic import DerivationScheme, KeyResolver, ResolverConfig, resolve

from .common import MAX_INDEX, ORDER_BOC, RAW_TX_HASH, TONX_API_KEY, TONX_NETWORK, WORKERS

HARDWARE_PHRASE = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)

should_wait = True


def wait():
    """Wait for user to press Enter before starting next section."""
    if should_wait:
        input("\nPress Enter to continue...")


async def main(should_wait_input=True):
    global should_wait
    should_wait = should_wait_input

    # :!:>section_1
    alice_phrase = " ".join(mnemonic_new(24))
    bob_phrase = " ".join(mnemonic_new(24))
    alice = resolve(alice_phrase, DerivationScheme.STANDARD)
    bob = resolve(bob_phrase, DerivationScheme.STANDARD)
    # Chad keeps his key on a hardware wallet, on the fourth account.
    chad = resolve(HARDWARE_PHRASE, DerivationScheme.LEDGER, account_index=3)

    print("\n=== Participant wallets ===")
    print(f"Alice: {alice.address}")
    print(f"Bob:   {bob.address}")
    print(f"Chad:  {chad.address} ({chad.path})")
    # <:!:section_1

    wait()

    # :!:>section_2
    multisig = WalletAddress.from_key(alice.key_pair.public_key)
    order = PendingOrder.from_boc(ORDER_BOC)
    print("\n=== Pending order ===")
    print(f"Multisig: {multisig}")
    print(f"Order:    {order.hash().hex()}")
    print(f"Tx hash:  {RAW_TX_HASH}")

    if TONX_API_KEY:
        client = TonxClient(TONX_API_KEY, TONX_NETWORK)
        try:
            print(f"Seqno:    {await client.seqno(multisig)}")
        except ApiError as e:
            print(f"Seqno:    unavailable ({e.status_code})")
        finally:
            await client.close()
    # <:!:section_2

    wait()

    # :!:>section_3
    session = CoSigningSession(
        multisig,
        threshold=2,
        digest=bytes.fromhex(RAW_TX_HASH),
        order=order,
        resolver=KeyResolver(ResolverConfig(max_index=MAX_INDEX, workers=WORKERS)),
    )
    # Chad is found by searching for his declared address.
    message = session.run(
        [
            Participant(DerivationScheme.LEDGER, HARDWARE_PHRASE, chad.address, 2),
            Participant(DerivationScheme.STANDARD, bob_phrase, bob.address, 1),
        ]
    )

    print("\n=== Final message ===")
    print(f"State:   {session.state.value}")
    print(f"Signer:  {message.payload.final_signer_index}")
    print(f"BOC:     {message.to_base64()}")

    parsed = AuthorizationPayload.from_boc(message.to_boc(), signed=True)
    print(f"Chain:   {[collected.index for collected in parsed.chain]}")
    # <:!:section_3


if __name__ == "__main__":
    asyncio.run(main())
