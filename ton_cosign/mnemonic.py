# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Key resolution from recovery phrases.

A co-signer of a TON multisig wallet may hold their key in one of several
kinds of wallet, each turning a recovery phrase into an Ed25519 key in its own
way:

- **STANDARD**: a TON-native 24-word phrase. The seed comes straight out of
  the phrase (PBKDF2 with the "TON default seed" salt); there is no path and
  therefore no index to search.
- **LEDGER**: a BIP-39 phrase derived the way hardware wallets do it, along
  ``m/44'/607'/0'/0'/{index}'/0'``.
- **MULTICHAIN**: a BIP-39 phrase derived the way multi-chain software
  wallets do it, along ``m/44'/607'/{index}'``.

For the path based schemes the account index used by the wallet is not known
up front. The resolver walks the indices in ascending order, derives the
wallet address every candidate key would own and stops at the first one that
equals the address the participant declared. The walk is bounded by
:attr:`ResolverConfig.max_index`; exhausting it raises
:class:`~ton_cosign.errors.KeyNotFound`.

Examples:
    Resolving a hardware wallet key::

        resolver = KeyResolver(ResolverConfig(max_index=100))
        resolved = resolver.resolve(
            "abandon abandon ... about",
            DerivationScheme.LEDGER,
            target_address=WalletAddress.from_str("UQBUQSw-..."),
        )
        print(resolved.index, resolved.address)
"""

from __future__ import annotations

import logging
import unittest
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Union

from bip_utils import Bip32Slip10Ed25519, Bip39SeedGenerator
from tonsdk.crypto import mnemonic_is_valid, mnemonic_new, mnemonic_to_wallet_key

from .address import ContractVersion, WalletAddress
from .ed25519 import KeyPair, PrivateKey
from .errors import InvalidRecoveryPhrase, KeyNotFound

DEFAULT_MAX_INDEX = 1000


class DerivationScheme(Enum):
    """How a recovery phrase is turned into a signing key."""

    STANDARD = "standard"
    LEDGER = "ledger"
    MULTICHAIN = "multichain"


@dataclass(frozen=True)
class SchemeSpec:
    """Static parameters of a derivation scheme.

    Attributes:
        path_template: SLIP-10 path with an ``{index}`` placeholder, or None
            when the seed is used directly.
        contract: Wallet contract revision the derived key is deployed as.
    """

    path_template: Optional[str]
    contract: ContractVersion

    @property
    def searchable(self) -> bool:
        return self.path_template is not None

    def path(self, index: int) -> Optional[str]:
        if self.path_template is None:
            return None
        return self.path_template.format(index=index)


SCHEMES: Dict[DerivationScheme, SchemeSpec] = {
    DerivationScheme.STANDARD: SchemeSpec(None, ContractVersion.V4R2),
    DerivationScheme.LEDGER: SchemeSpec("m/44'/607'/0'/0'/{index}'/0'", ContractVersion.V4R2),
    DerivationScheme.MULTICHAIN: SchemeSpec("m/44'/607'/{index}'", ContractVersion.V4R2),
}


@dataclass
class ResolverConfig:
    """Tuning for the index search.

    Attributes:
        max_index: Number of derivation indices scanned, starting at 0.
        workers: Size of the thread pool used to derive candidates; 1 scans
            sequentially.
        workchain: Workchain the participant wallets live on.
    """

    max_index: int = DEFAULT_MAX_INDEX
    workers: int = 1
    workchain: int = 0

    def __post_init__(self):
        if self.max_index < 1:
            raise ValueError("max_index must be positive")
        if self.workers < 1:
            raise ValueError("workers must be positive")


@dataclass(frozen=True)
class ResolvedKey:
    """A keypair together with the wallet it controls."""

    key_pair: KeyPair
    address: WalletAddress
    scheme: DerivationScheme
    index: Optional[int] = None
    path: Optional[str] = None


def normalize_phrase(phrase: Union[str, Sequence[str]]) -> List[str]:
    """Split a phrase into lowercase words, tolerating extra whitespace."""
    if isinstance(phrase, str):
        words = phrase.split()
    else:
        words = [word for part in phrase for word in part.split()]
    return [word.lower() for word in words]


def standard_key_pair(words: List[str]) -> KeyPair:
    """Derive the keypair of a TON-native phrase."""
    if not mnemonic_is_valid(words):
        raise InvalidRecoveryPhrase("Not a valid TON mnemonic", DerivationScheme.STANDARD.value)
    _, secret_key = mnemonic_to_wallet_key(words)
    return PrivateKey.from_seed(bytes(secret_key[: PrivateKey.LENGTH])).key_pair()


def bip39_seed(words: List[str], scheme: DerivationScheme) -> bytes:
    """Return the 64-byte BIP-39 seed of a phrase, with an empty passphrase.

    Raises:
        InvalidRecoveryPhrase: If a word is unknown or the checksum fails.
    """
    try:
        return bytes(Bip39SeedGenerator(" ".join(words)).Generate())
    except Exception as e:
        # Unknown words raise ValueError, a bad checksum raises MnemonicChecksumError.
        raise InvalidRecoveryPhrase(f"Not a valid BIP-39 mnemonic: {e}", scheme.value) from e


def path_derive(seed: bytes, path: str) -> bytes:
    """SLIP-10 Ed25519 derivation of a 32-byte private seed along ``path``."""
    context = Bip32Slip10Ed25519.FromSeedAndPath(seed, path)
    return bytes(context.PrivateKey().Raw().ToBytes())


class KeyResolver:
    """Turns recovery phrases into keypairs, searching indices where needed."""

    config: ResolverConfig

    def __init__(self, config: Optional[ResolverConfig] = None):
        self.config = config or ResolverConfig()

    def resolve(
        self,
        phrase: Union[str, Sequence[str], None],
        scheme: DerivationScheme,
        account_index: Optional[int] = None,
        target_address: Optional[WalletAddress] = None,
    ) -> ResolvedKey:
        """Resolve the keypair a participant signs with.

        Args:
            phrase: The recovery phrase, as text or a list of words.
            scheme: The derivation scheme of the wallet holding the phrase.
            account_index: Derive at exactly this index instead of searching.
                Ignored by STANDARD.
            target_address: The wallet address the participant declared.
                Drives the index search for path based schemes.

        Raises:
            InvalidRecoveryPhrase: If the phrase is missing or not valid for ``scheme``.
            KeyNotFound: If no scanned index derives ``target_address``, or
                the explicit ``account_index`` derives a different address.
        """
        spec = SCHEMES[scheme]
        if not phrase:
            raise InvalidRecoveryPhrase("Missing recovery phrase", scheme.value)
        words = normalize_phrase(phrase)

        if not spec.searchable:
            key_pair = standard_key_pair(words)
            address = WalletAddress.from_key(
                key_pair.public_key, spec.contract, self.config.workchain
            )
            if target_address is not None and address != target_address:
                logging.warning(
                    f"{scheme.value} phrase owns {address}, not the declared {target_address}"
                )
            return ResolvedKey(key_pair, address, scheme)

        seed = bip39_seed(words, scheme)

        if account_index is not None or target_address is None:
            index = account_index if account_index is not None else 0
            candidate = self._candidate(seed, scheme, index)
            if target_address is not None and candidate.address != target_address:
                raise KeyNotFound(str(target_address), 1)
            return candidate

        for candidate in self._scan(seed, scheme):
            logging.debug(f"index {candidate.index}: {candidate.address}")
            if candidate.address == target_address:
                logging.info(
                    f"Found the keypair for {target_address} at {candidate.path}"
                )
                return candidate

        raise KeyNotFound(str(target_address), self.config.max_index)

    def _candidate(self, seed: bytes, scheme: DerivationScheme, index: int) -> ResolvedKey:
        spec = SCHEMES[scheme]
        path = spec.path(index)
        key_pair = PrivateKey.from_seed(path_derive(seed, path)).key_pair()
        address = WalletAddress.from_key(
            key_pair.public_key, spec.contract, self.config.workchain
        )
        return ResolvedKey(key_pair, address, scheme, index, path)

    def _scan(self, seed: bytes, scheme: DerivationScheme) -> Iterator[ResolvedKey]:
        """Yield candidates in ascending index order up to the search bound."""
        max_index = self.config.max_index
        workers = self.config.workers

        if workers == 1:
            for index in range(max_index):
                yield self._candidate(seed, scheme, index)
            return

        with ThreadPoolExecutor(max_workers=workers) as executor:
            for start in range(0, max_index, workers):
                batch = range(start, min(start + workers, max_index))
                # map() keeps submission order, so the lowest matching index wins.
                yield from executor.map(
                    lambda index: self._candidate(seed, scheme, index), batch
                )


def resolve(
    phrase: Union[str, Sequence[str]],
    scheme: DerivationScheme,
    account_index: Optional[int] = None,
    target_address: Optional[WalletAddress] = None,
    config: Optional[ResolverConfig] = None,
) -> ResolvedKey:
    """Resolve with a one-off :class:`KeyResolver`."""
    return KeyResolver(config).resolve(phrase, scheme, account_index, target_address)


class Test(unittest.TestCase):
    PHRASE = (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )

    def test_scheme_table(self):
        self.assertIsNone(SCHEMES[DerivationScheme.STANDARD].path(3))
        self.assertEqual(
            SCHEMES[DerivationScheme.LEDGER].path(3), "m/44'/607'/0'/0'/3'/0'"
        )
        self.assertEqual(SCHEMES[DerivationScheme.MULTICHAIN].path(3), "m/44'/607'/3'")

    def test_normalize_phrase(self):
        self.assertEqual(normalize_phrase("  Foo  bar\nbaz "), ["foo", "bar", "baz"])
        self.assertEqual(normalize_phrase(["foo bar", "Baz"]), ["foo", "bar", "baz"])

    def test_idempotent(self):
        resolver = KeyResolver()
        first = resolver.resolve(self.PHRASE, DerivationScheme.LEDGER, account_index=2)
        second = resolver.resolve(self.PHRASE, DerivationScheme.LEDGER, account_index=2)
        self.assertEqual(first.key_pair, second.key_pair)
        self.assertEqual(first.address, second.address)
        self.assertEqual(first.path, "m/44'/607'/0'/0'/2'/0'")

    def test_schemes_differ(self):
        resolver = KeyResolver()
        ledger = resolver.resolve(self.PHRASE, DerivationScheme.LEDGER, account_index=0)
        multichain = resolver.resolve(self.PHRASE, DerivationScheme.MULTICHAIN, account_index=0)
        self.assertNotEqual(ledger.key_pair.public_key, multichain.key_pair.public_key)

    def test_search_finds_index(self):
        resolver = KeyResolver(ResolverConfig(max_index=10))
        expected = resolver.resolve(self.PHRASE, DerivationScheme.LEDGER, account_index=4)
        found = resolver.resolve(
            self.PHRASE, DerivationScheme.LEDGER, target_address=expected.address
        )
        self.assertEqual(found.index, 4)
        self.assertEqual(found.key_pair, expected.key_pair)

    def test_parallel_search_matches_sequential(self):
        sequential = KeyResolver(ResolverConfig(max_index=10))
        parallel = KeyResolver(ResolverConfig(max_index=10, workers=3))
        expected = sequential.resolve(
            self.PHRASE, DerivationScheme.MULTICHAIN, account_index=7
        )
        found = parallel.resolve(
            self.PHRASE, DerivationScheme.MULTICHAIN, target_address=expected.address
        )
        self.assertEqual(found.index, 7)

    def test_key_not_found(self):
        resolver = KeyResolver(ResolverConfig(max_index=3))
        target = WalletAddress(0, b"\x42" * 32)
        with self.assertRaises(KeyNotFound) as cm:
            resolver.resolve(self.PHRASE, DerivationScheme.LEDGER, target_address=target)
        self.assertEqual(cm.exception.scanned, 3)
        self.assertEqual(cm.exception.target_address, str(target))

    def test_explicit_index_mismatch(self):
        resolver = KeyResolver()
        with self.assertRaises(KeyNotFound):
            resolver.resolve(
                self.PHRASE,
                DerivationScheme.LEDGER,
                account_index=0,
                target_address=WalletAddress(0, b"\x42" * 32),
            )

    def test_invalid_bip39(self):
        with self.assertRaises(InvalidRecoveryPhrase):
            resolve("abandon " * 12, DerivationScheme.LEDGER, account_index=0)

    def test_standard(self):
        words = mnemonic_new(24)
        resolved = resolve(words, DerivationScheme.STANDARD)
        self.assertIsNone(resolved.index)
        self.assertEqual(resolve(" ".join(words), DerivationScheme.STANDARD), resolved)
        self.assertEqual(
            resolved.address,
            WalletAddress.from_key(resolved.key_pair.public_key, ContractVersion.V4R2),
        )

    def test_missing_phrase(self):
        for phrase in [None, "", []]:
            with self.assertRaises(InvalidRecoveryPhrase):
                resolve(phrase, DerivationScheme.LEDGER, account_index=0)
        with self.assertRaises(InvalidRecoveryPhrase):
            resolve(None, DerivationScheme.STANDARD)

    def test_invalid_standard(self):
        with self.assertRaises(InvalidRecoveryPhrase):
            resolve(self.PHRASE, DerivationScheme.STANDARD)

    def test_config_bounds(self):
        with self.assertRaises(ValueError):
            ResolverConfig(max_index=0)
        with self.assertRaises(ValueError):
            ResolverConfig(workers=0)


if __name__ == "__main__":
    unittest.main()
