# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import base64
import unittest
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from tonsdk.boc import Cell, begin_cell
from tonsdk.contract import Contract
from tonsdk.contract.wallet import Wallets

from . import cells
from .address import ContractVersion, WalletAddress
from .cells import HASH_LENGTH
from .ed25519 import KeyPair, PrivateKey, PublicKey, Signature
from .errors import EncodingFailure, InvalidDigestLength, SignerClosed
from .mnemonic import DerivationScheme, KeyResolver, ResolvedKey

DEFAULT_WALLET_ID = 698983191
NO_EXPIRY = 0xFFFFFFFF
SEND_MODE_PAY_GAS_SEPARATELY = 1


@dataclass(frozen=True)
class WalletTransfer:
    """A signed external transfer from a participant's own v4 wallet.

    Attributes:
        body: The signed body: the signature followed by the signing message.
        message: The external message carrying ``body`` and the wallet's
            state init, ready to broadcast.
    """

    body: Cell
    message: Cell

    def to_boc(self) -> bytes:
        """Serialize the external message.

        Returns:
            The bag-of-cells bytes of ``message``.
        """
        return cells.export(self.message)

    def to_base64(self) -> str:
        """Serialize the external message as standard base64, as wallets broadcast it."""
        return base64.b64encode(self.to_boc()).decode()


def sign(key_pair: KeyPair, digest: bytes) -> Signature:
    """Produce a detached Ed25519 signature over a 32-byte digest.

    Args:
        key_pair: The keypair to sign with.
        digest: A 32-byte hash, either a raw transaction hash or the hash of
            an authorization body.

    Raises:
        InvalidDigestLength: If ``digest`` is not exactly 32 bytes.
    """
    if len(digest) != HASH_LENGTH:
        raise InvalidDigestLength(len(digest), HASH_LENGTH)
    return key_pair.private_key().sign(bytes(digest))


class Signer:
    """The signing identity of one multisig participant.

    A Signer owns exactly one resolved keypair for as long as it is open. It
    is meant to be used as a context manager: leaving the block drops the
    secret key, after which any further signing attempt raises
    :class:`~ton_cosign.errors.SignerClosed`. The public key and wallet
    address stay available after closing.

    Examples:
        Signing the raw transaction hash of an order::

            with Signer.from_phrase(phrase, DerivationScheme.LEDGER, target) as signer:
                signature = signer.sign_hex(raw_tx_hash)
    """

    address: WalletAddress
    public_key: PublicKey
    scheme: DerivationScheme
    derivation_index: Optional[int]
    _key_pair: Optional[KeyPair]

    def __init__(self, resolved: ResolvedKey):
        self.address = resolved.address
        self.public_key = PublicKey.from_bytes(resolved.key_pair.public_key)
        self.scheme = resolved.scheme
        self.derivation_index = resolved.index
        self._key_pair = resolved.key_pair

    def __enter__(self) -> Signer:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"Signer({self.address}, {self.scheme.value}, {state})"

    @staticmethod
    def generate() -> Signer:
        """Create a signer around a random key, for tests and dry runs."""
        key_pair = PrivateKey.random().key_pair()
        return Signer(
            ResolvedKey(
                key_pair,
                WalletAddress.from_key(key_pair.public_key),
                DerivationScheme.STANDARD,
            )
        )

    @staticmethod
    def from_phrase(
        phrase: Union[str, Sequence[str]],
        scheme: DerivationScheme,
        target_address: Optional[WalletAddress] = None,
        account_index: Optional[int] = None,
        resolver: Optional[KeyResolver] = None,
    ) -> Signer:
        """Resolve a participant's key from a recovery phrase.

        Args:
            phrase: The recovery phrase, as text or a list of words.
            scheme: How the phrase maps to keys.
            target_address: The wallet the key must control. Path-based
                schemes search derivation indices until it matches.
            account_index: Derive this index directly instead of searching.
            resolver: Search configuration; a default resolver when omitted.

        Returns:
            An open Signer for the resolved key.

        Raises:
            InvalidRecoveryPhrase: If the phrase is missing or not valid.
            KeyNotFound: If no searched index controls ``target_address``.
        """
        resolver = resolver or KeyResolver()
        return Signer(resolver.resolve(phrase, scheme, account_index, target_address))

    @property
    def closed(self) -> bool:
        return self._key_pair is None

    def close(self) -> None:
        """Release the secret key. Closing twice is harmless."""
        self._key_pair = None

    def sign_digest(self, digest: bytes) -> Signature:
        """Sign a 32-byte digest.

        Args:
            digest: The raw transaction hash or an authorization body hash.

        Returns:
            The detached Ed25519 signature.

        Raises:
            SignerClosed: If the signer has been closed.
            InvalidDigestLength: If ``digest`` is not 32 bytes.
        """
        if self._key_pair is None:
            raise SignerClosed(f"Signer for {self.address} has already been closed")
        return sign(self._key_pair, digest)

    def sign_hex(self, digest_hex: str) -> Signature:
        """Sign a hex encoded digest, with or without ``0x`` prefix."""
        if digest_hex[0:2] == "0x":
            digest_hex = digest_hex[2:]
        return self.sign_digest(bytes.fromhex(digest_hex))

    def transfer_message(
        self,
        destination: WalletAddress,
        amount: int,
        seqno: int,
        payload: Union[Cell, str, None] = None,
        bounce: bool = True,
        op_code: int = 0,
    ) -> WalletTransfer:
        """Build a signed transfer out of the participant's own v4 wallet.

        The signing message holds the subwallet id, a ``valid_until`` of
        0xFFFFFFFF (no expiry), ``seqno``, ``op_code`` and the send mode
        (pay gas separately), with the internal message as its only
        reference. Its hash is signed with this signer's key. The wallet's
        state init always travels along, so the first transfer also deploys
        the wallet.

        Args:
            destination: Receiver of the internal message.
            amount: Value to send, in nanotons.
            seqno: The wallet's current seqno, see
                :meth:`~ton_cosign.async_client.TonxClient.seqno`.
            payload: A body cell, or a text comment.
            bounce: Bounce the value back if the receiver fails.
            op_code: The wallet operation, 0 for a simple send.

        Returns:
            The signed body and the external message wrapping it.

        Raises:
            SignerClosed: If the signer has been closed.
            EncodingFailure: If a field does not fit its slot or the message
                cannot be assembled.
        """
        if self._key_pair is None:
            raise SignerClosed(f"Signer for {self.address} has already been closed")
        if amount < 0 or not 0 <= seqno <= NO_EXPIRY or not 0 <= op_code <= 0xFF:
            raise EncodingFailure(
                f"Invalid transfer fields: amount={amount} seqno={seqno} op_code={op_code}"
            )

        if isinstance(payload, str):
            payload = begin_cell().store_uint(0, 32).store_bytes(payload.encode()).end_cell()

        try:
            wallet = Wallets.ALL[ContractVersion.V4R2.wallet_version()](
                public_key=self.public_key.to_bytes(),
                private_key=self._key_pair.secret_key,
                wc=self.address.workchain,
            )
            header = Contract.create_internal_message_header(
                destination.raw(), amount, bounce=bounce
            )
            internal = Contract.create_common_msg_info(header, None, payload)
            signing_message = (
                begin_cell()
                .store_uint(DEFAULT_WALLET_ID + self.address.workchain, 32)
                .store_uint(NO_EXPIRY, 32)
                .store_uint(seqno, 32)
                .store_uint(op_code, 8)
                .store_uint(SEND_MODE_PAY_GAS_SEPARATELY, 8)
                .store_ref(internal)
                .end_cell()
            )
        except Exception as e:
            raise EncodingFailure(f"Unable to build transfer: {e}") from e

        signature = self.sign_digest(cells.cell_hash(signing_message))
        try:
            body = (
                begin_cell()
                .store_bytes(signature.data())
                .store_cell(signing_message)
                .end_cell()
            )
            state_init = wallet.create_state_init()["state_init"]
            header = Contract.create_external_message_header(self.address.raw())
            message = Contract.create_common_msg_info(header, state_init, body)
        except Exception as e:
            raise EncodingFailure(f"Unable to build transfer: {e}") from e
        return WalletTransfer(body, message)


class Test(unittest.TestCase):
    def test_sign_and_verify(self):
        digest = bytes.fromhex(
            "8da63e8b87b37ae43c83787be78b6cb66eb914b3fd487a20fb33ed4ac60a5bc7"
        )
        with Signer.generate() as signer:
            signature = signer.sign_hex(digest.hex())
            self.assertEqual(signature, signer.sign_digest(digest))
            self.assertTrue(signer.public_key.verify(digest, signature))
            self.assertEqual(signer.address, WalletAddress.from_key(signer.public_key.to_bytes()))

    def test_invalid_digest_length(self):
        signer = Signer.generate()
        with self.assertRaises(InvalidDigestLength) as cm:
            signer.sign_digest(b"\x00" * 31)
        self.assertEqual(cm.exception.length, 31)
        with self.assertRaises(InvalidDigestLength):
            signer.sign_digest(b"")

    def test_closed(self):
        with Signer.generate() as signer:
            pass
        self.assertTrue(signer.closed)
        with self.assertRaises(SignerClosed):
            signer.sign_digest(b"\x00" * 32)
        self.assertIn("closed", repr(signer))

    def test_transfer_message(self):
        destination = WalletAddress(0, b"\x42" * 32)
        with Signer.generate() as signer:
            transfer = signer.transfer_message(destination, 50_000_000, 7, "hi")
            again = signer.transfer_message(destination, 50_000_000, 7, "hi")
        self.assertEqual(cells.cell_hash(transfer.message), cells.cell_hash(again.message))

        body = transfer.body.begin_parse()
        signature = Signature(body.read_bytes(64))
        signing_message = cells.copy_remainder(
            body, cells.bit_length(transfer.body) - 512, 1
        )
        self.assertTrue(
            signer.public_key.verify(cells.cell_hash(signing_message), signature)
        )

        fields = signing_message.begin_parse()
        self.assertEqual(fields.read_uint(32), DEFAULT_WALLET_ID)
        self.assertEqual(fields.read_uint(32), NO_EXPIRY)
        self.assertEqual(fields.read_uint(32), 7)
        self.assertEqual(fields.read_uint(8), 0)
        self.assertEqual(fields.read_uint(8), SEND_MODE_PAY_GAS_SEPARATELY)

        internal = fields.read_ref().begin_parse()
        self.assertEqual(internal.read_bit(), 0)
        self.assertEqual(internal.read_bit(), 1)
        self.assertEqual(internal.read_bit(), 1)
        self.assertEqual(internal.read_bit(), 0)
        self.assertEqual(internal.read_uint(2), 0)
        self.assertEqual(internal.read_uint(2), 2)
        self.assertEqual(internal.read_bit(), 0)
        self.assertEqual(internal.read_uint(8), 0)
        self.assertEqual(internal.read_bytes(32), destination.hash_part)

        self.assertEqual(
            cells.cell_hash(cells.load_boc(transfer.to_base64())),
            cells.cell_hash(transfer.message),
        )

    def test_transfer_rejected(self):
        destination = WalletAddress(0, b"\x42" * 32)
        signer = Signer.generate()
        with self.assertRaises(EncodingFailure):
            signer.transfer_message(destination, -1, 0)
        with self.assertRaises(EncodingFailure):
            signer.transfer_message(destination, 1, NO_EXPIRY + 1)
        signer.close()
        with self.assertRaises(SignerClosed):
            signer.transfer_message(destination, 1, 0)

    def test_module_sign(self):
        key_pair = PrivateKey.random().key_pair()
        digest = b"\x07" * 32
        signature = sign(key_pair, digest)
        self.assertTrue(PublicKey.from_bytes(key_pair.public_key).verify(digest, signature))
        with self.assertRaises(InvalidDigestLength):
            sign(key_pair, b"\x07" * 33)


if __name__ == "__main__":
    unittest.main()
