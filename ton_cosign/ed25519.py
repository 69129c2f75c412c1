# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Ed25519 primitives used by TON wallets.

TON wallet contracts verify Ed25519 signatures over 32-byte cell hashes. This
module wraps PyNaCl with small value types so the rest of the toolkit never
handles raw key material directly:

- PrivateKey: a NaCl SigningKey built from a 32-byte seed
- PublicKey: a NaCl VerifyKey used to check signatures
- Signature: a 64-byte detached signature
- KeyPair: the public key plus the 64-byte secret key, the shape TON tooling
  exchanges (seed followed by public key)

Examples:
    Signing and verifying::

        private_key = PrivateKey.from_seed(seed32)
        signature = private_key.sign(digest)
        assert private_key.public_key().verify(digest, signature)
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass

from nacl.signing import SigningKey, VerifyKey


class PrivateKey:
    """Ed25519 private key.

    Attributes:
        LENGTH: The byte length of the seed (32).
        key: The underlying NaCl SigningKey instance.
    """

    LENGTH: int = 32

    key: SigningKey

    def __init__(self, key: SigningKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self.key == other.key

    def __repr__(self) -> str:
        return f"PrivateKey(public_key={self.public_key()})"

    @staticmethod
    def from_seed(seed: bytes) -> PrivateKey:
        """Create a private key from a 32-byte seed.

        Raises:
            ValueError: If the seed is not exactly 32 bytes.
        """
        if len(seed) != PrivateKey.LENGTH:
            raise ValueError(f"Expected a seed of length {PrivateKey.LENGTH}, got {len(seed)}")
        return PrivateKey(SigningKey(bytes(seed)))

    @staticmethod
    def from_secret_key(secret_key: bytes) -> PrivateKey:
        """Create a private key from a 64-byte TON secret key (seed + public key)."""
        if len(secret_key) != KeyPair.SECRET_LENGTH:
            raise ValueError(
                f"Expected a secret key of length {KeyPair.SECRET_LENGTH}, got {len(secret_key)}"
            )
        return PrivateKey.from_seed(secret_key[: PrivateKey.LENGTH])

    @staticmethod
    def random() -> PrivateKey:
        return PrivateKey(SigningKey.generate())

    def public_key(self) -> PublicKey:
        return PublicKey(self.key.verify_key)

    def key_pair(self) -> KeyPair:
        public_key = self.key.verify_key.encode()
        return KeyPair(public_key, self.key.encode() + public_key)

    def sign(self, data: bytes) -> Signature:
        """Create a detached signature over ``data``."""
        return Signature(self.key.sign(data).signature)


class PublicKey:
    """Ed25519 public key.

    Attributes:
        LENGTH: The byte length of Ed25519 public keys (32).
        key: The underlying NaCl VerifyKey instance.
    """

    LENGTH: int = 32

    key: VerifyKey

    def __init__(self, key: VerifyKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.key == other.key

    def __str__(self) -> str:
        return f"0x{self.key.encode().hex()}"

    def __repr__(self) -> str:
        return self.__str__()

    @staticmethod
    def from_bytes(value: bytes) -> PublicKey:
        if len(value) != PublicKey.LENGTH:
            raise ValueError(f"Expected a public key of length {PublicKey.LENGTH}")
        return PublicKey(VerifyKey(bytes(value)))

    @staticmethod
    def from_str(value: str) -> PublicKey:
        if value[0:2] == "0x":
            value = value[2:]
        return PublicKey.from_bytes(bytes.fromhex(value))

    def to_bytes(self) -> bytes:
        return self.key.encode()

    def verify(self, data: bytes, signature: Signature) -> bool:
        """Verify a detached signature over ``data``.

        Returns:
            True if the signature is valid, False otherwise.
        """
        try:
            self.key.verify(data, signature.data())
        except Exception:
            return False
        return True


class Signature:
    """Ed25519 detached signature.

    Attributes:
        LENGTH: The byte length of Ed25519 signatures (64).
        signature: The raw signature bytes.
    """

    LENGTH: int = 64

    signature: bytes

    def __init__(self, signature: bytes):
        self.signature = bytes(signature)

    def __eq__(self, other: object):
        if not isinstance(other, Signature):
            return NotImplemented
        return self.signature == other.signature

    def __hash__(self) -> int:
        return hash(self.signature)

    def __str__(self) -> str:
        return f"0x{self.signature.hex()}"

    def __repr__(self) -> str:
        return f"Signature({self.signature.hex()})"

    def data(self) -> bytes:
        return self.signature

    def hex(self) -> str:
        return self.signature.hex()

    @staticmethod
    def from_str(value: str) -> Signature:
        if value[0:2] == "0x":
            value = value[2:]
        return Signature(bytes.fromhex(value))


@dataclass(frozen=True)
class KeyPair:
    """A resolved signing keypair in the layout TON tooling uses.

    ``secret_key`` is the 32-byte seed followed by the 32-byte public key, as
    produced by ``nacl.sign.keyPair.fromSeed``.
    """

    SECRET_LENGTH = 64

    public_key: bytes
    secret_key: bytes

    def __repr__(self) -> str:
        # Never render secret material.
        return f"KeyPair(public_key={self.public_key.hex()})"

    def private_key(self) -> PrivateKey:
        return PrivateKey.from_secret_key(self.secret_key)


class Test(unittest.TestCase):
    # RFC 8032, section 7.1, test 1
    SEED = bytes.fromhex("9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60")
    PUBLIC = bytes.fromhex("d75a980182b10ab7d54bfed3c964073a0ee172f3daa62325af021a68f707511a")
    SIGNATURE = (
        "e5564300c360ac729086e2cc806e828a84877f1eb8e5d974d873e065224901555fb8821590a33bacc61e39701cf9b46bd25bf5f0595bbe24655141438e7a100b"
    )

    def test_rfc8032_vector(self):
        private_key = PrivateKey.from_seed(self.SEED)
        self.assertEqual(private_key.public_key().to_bytes(), self.PUBLIC)
        self.assertEqual(private_key.sign(b"").hex(), self.SIGNATURE)

    def test_key_pair_layout(self):
        key_pair = PrivateKey.from_seed(self.SEED).key_pair()
        self.assertEqual(key_pair.public_key, self.PUBLIC)
        self.assertEqual(key_pair.secret_key, self.SEED + self.PUBLIC)
        self.assertEqual(key_pair.private_key(), PrivateKey.from_seed(self.SEED))
        self.assertNotIn(self.SEED.hex(), repr(key_pair))

    def test_sign_and_verify(self):
        private_key = PrivateKey.random()
        public_key = private_key.public_key()
        signature = private_key.sign(b"\x01" * 32)
        self.assertTrue(public_key.verify(b"\x01" * 32, signature))
        self.assertFalse(public_key.verify(b"\x02" * 32, signature))
        self.assertEqual(Signature.from_str(str(signature)), signature)
        self.assertEqual(PublicKey.from_str(str(public_key)), public_key)

    def test_length_checks(self):
        with self.assertRaises(ValueError):
            PrivateKey.from_seed(b"\x00" * 31)
        with self.assertRaises(ValueError):
            PrivateKey.from_secret_key(b"\x00" * 32)
        with self.assertRaises(ValueError):
            PublicKey.from_bytes(b"\x00" * 33)


if __name__ == "__main__":
    unittest.main()
