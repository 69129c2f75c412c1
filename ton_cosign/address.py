# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Wallet address handling for the TON co-signing toolkit.

A TON address is a workchain identifier plus the 32-byte hash of the
contract's initial state. The same address has several spellings: the raw
``workchain:hex`` form and the user-friendly base64 forms, which additionally
carry a bounceable flag, a testnet flag and a checksum. Two spellings of one
account therefore have to be compared by ``(workchain, hash)``, never as text.

Participants declare the address of their personal wallet. For hardware and
multi-chain phrases the toolkit re-derives that address from candidate public
keys, so this module also exposes the address derivation primitive: the
address of a standard wallet contract deployed with a given public key.

Examples:
    Parsing and formatting::

        addr = WalletAddress.from_str("UQBUQSw-F6EMKVpun_Uj_raPCczMyU0mw01W2ZRPrpJiBo-J")
        print(addr.to_str(bounceable=True))

    Deriving a wallet address::

        addr = WalletAddress.from_key(public_key, ContractVersion.V4R2, workchain=0)
"""

from __future__ import annotations

import unittest
from enum import Enum

from tonsdk.contract.wallet import Wallets, WalletVersionEnum
from tonsdk.utils import Address

from .errors import InvalidAddressFormat


class ContractVersion(Enum):
    """Wallet contract revisions a participant key can be deployed as."""

    V3R2 = "v3r2"
    V4R2 = "v4r2"

    def wallet_version(self) -> WalletVersionEnum:
        return WalletVersionEnum(self.value)


class WalletAddress:
    """An account on a TON workchain.

    Attributes:
        workchain: The workchain id, 0 for the basechain and -1 for masterchain.
        hash_part: The 32-byte account id.
        LENGTH: The byte length of the account id (32).
    """

    workchain: int
    hash_part: bytes
    LENGTH: int = 32

    def __init__(self, workchain: int, hash_part: bytes):
        if len(hash_part) != WalletAddress.LENGTH:
            raise InvalidAddressFormat(
                "Expected account id of length 32", bytes(hash_part).hex()
            )
        self.workchain = workchain
        self.hash_part = bytes(hash_part)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WalletAddress):
            return NotImplemented
        return (self.workchain, self.hash_part) == (other.workchain, other.hash_part)

    def __hash__(self) -> int:
        return hash((self.workchain, self.hash_part))

    def __str__(self) -> str:
        """Non-bounceable, url-safe user-friendly form, as shown to wallet owners."""
        return self.to_str()

    def __repr__(self) -> str:
        return f"WalletAddress({self.raw()})"

    def raw(self) -> str:
        """Return the ``workchain:hex`` form."""
        return f"{self.workchain}:{self.hash_part.hex()}"

    def to_str(self, bounceable: bool = False, test_only: bool = False) -> str:
        """Format as a user-friendly url-safe base64 address.

        Args:
            bounceable: Set the bounceable flag (``EQ...`` instead of ``UQ...``
                on mainnet).
            test_only: Set the testnet-only flag.
        """
        return self._to_tonsdk().to_string(True, True, bounceable, test_only)

    def _to_tonsdk(self) -> Address:
        return Address(self.raw())

    @staticmethod
    def from_str(address: str) -> WalletAddress:
        """Parse any spelling of an address.

        Args:
            address: A raw (``0:abc...``) or user-friendly (base64, either
                alphabet) address.

        Raises:
            InvalidAddressFormat: If the text is not a well formed address or
                its checksum does not match.
        """
        text = address.strip()
        if not text:
            raise InvalidAddressFormat("Empty address", address)
        try:
            parsed = Address(text)
        except Exception as e:
            raise InvalidAddressFormat(f"Invalid address {address!r}: {e}", address) from e
        return WalletAddress(parsed.wc, bytes(parsed.hash_part))

    @staticmethod
    def from_key(
        public_key: bytes, version: ContractVersion = ContractVersion.V4R2, workchain: int = 0
    ) -> WalletAddress:
        """Derive the address of a standard wallet contract owned by ``public_key``.

        The address is the hash of the contract's initial state (code plus
        data holding the public key and the default subwallet id), so it is a
        pure function of the key, the contract revision and the workchain.

        Args:
            public_key: The 32-byte Ed25519 public key.
            version: The wallet contract revision.
            workchain: The workchain the wallet lives on.
        """
        # Address derivation only reads the public key; no secret is handed over.
        wallet = Wallets.ALL[version.wallet_version()](
            public_key=bytes(public_key), private_key=b"", wc=workchain
        )
        return WalletAddress(wallet.address.wc, bytes(wallet.address.hash_part))


class Test(unittest.TestCase):
    def test_raw_round_trip(self):
        addr = WalletAddress(0, bytes(range(32)))
        self.assertEqual(WalletAddress.from_str(addr.raw()), addr)
        self.assertEqual(addr.raw(), "0:" + bytes(range(32)).hex())

    def test_user_friendly_spellings_match(self):
        addr = WalletAddress(0, bytes.fromhex("54" * 32))
        non_bounceable = addr.to_str()
        bounceable = addr.to_str(bounceable=True)
        self.assertNotEqual(non_bounceable, bounceable)
        self.assertTrue(non_bounceable.startswith("UQ"))
        self.assertTrue(bounceable.startswith("EQ"))
        self.assertEqual(WalletAddress.from_str(non_bounceable), addr)
        self.assertEqual(WalletAddress.from_str(bounceable), addr)

    def test_invalid(self):
        for text in ["", "hello", "0:abc", "UQBUQSw-F6EMKVpun_Uj_raPCczMyU0mw01W2ZRPrpJiBo-X"]:
            with self.assertRaises(InvalidAddressFormat):
                WalletAddress.from_str(text)
        with self.assertRaises(InvalidAddressFormat):
            WalletAddress(0, b"\x00" * 31)

    def test_from_key(self):
        key = bytes.fromhex("11" * 32)
        v4 = WalletAddress.from_key(key, ContractVersion.V4R2)
        self.assertEqual(v4, WalletAddress.from_key(key, ContractVersion.V4R2))
        self.assertNotEqual(v4, WalletAddress.from_key(key, ContractVersion.V3R2))
        self.assertNotEqual(v4, WalletAddress.from_key(bytes.fromhex("22" * 32)))
        self.assertEqual(v4.workchain, 0)
        self.assertEqual(WalletAddress.from_key(key, workchain=-1).workchain, -1)


if __name__ == "__main__":
    unittest.main()
