# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Co-signing rounds for M-of-N TON multisig wallets.

A :class:`CoSigningSession` drives one authorization round from the declared
participants to the final message:

1. **Collecting keys**: every participant declaration is checked up front
   (index range, duplicate indices, enough participants for the threshold).
2. **Collecting signatures**: participants are processed one at a time in
   declaration order. Each one's key is resolved from the recovery phrase,
   signs the shared raw transaction hash and is released again.
3. **Finalizing**: the threshold-th participant additionally signs the
   canonical authorization body that nests everybody else's signatures.

A failure at any step aborts the round and re-raises the original error. No
partial message is ever produced, and a session runs at most once. The
participant declarations are never modified, so an aborted round can be
retried with a fresh session.

Examples:
    A 2-of-2 round::

        session = CoSigningSession(
            wallet_address=WalletAddress.from_str("EQA73dVDgA1D..."),
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

from __future__ import annotations

import logging
import unittest
import unittest.mock
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Union

from . import cells
from .account import Signer
from .address import WalletAddress
from .authorization import (
    AuthorizationPayload,
    CollectedSignature,
    FinalMessage,
    PendingOrder,
    build_authorization,
    validate_index,
)
from .ed25519 import PrivateKey
from .errors import (
    DuplicateParticipantIndex,
    InsufficientSignatures,
    InvalidDigestLength,
    InvalidThreshold,
    KeyNotFound,
    SessionStateError,
)
from .mnemonic import DerivationScheme, KeyResolver, ResolvedKey, ResolverConfig

MAX_PARTICIPANTS = 256


class SessionState(Enum):
    IDLE = "idle"
    COLLECTING_KEYS = "collecting_keys"
    COLLECTING_SIGNATURES = "collecting_signatures"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class Participant:
    """One co-signer's declaration for a round.

    Attributes:
        scheme: How ``phrase`` derives the signing key.
        phrase: The recovery phrase. Only read while resolving the key.
        address: The participant's personal wallet address, as text or parsed.
        index: The participant's index in the multisig wallet.
        account_index: Explicit derivation index, skipping the search.
    """

    scheme: DerivationScheme
    phrase: Union[str, Sequence[str], None]
    address: Union[str, WalletAddress, None]
    index: int
    account_index: Optional[int] = None

    def __post_init__(self):
        if isinstance(self.address, str):
            self.address = WalletAddress.from_str(self.address)

    def __repr__(self) -> str:
        return f"Participant({self.index}, {self.scheme.value}, {self.address})"


class CoSigningSession:
    """One authorization round of a multisig wallet.

    Attributes:
        wallet_address: The multisig wallet being authorized.
        threshold: Number of signatures the wallet requires.
        digest: Raw transaction hash every participant signs.
        order: The pending order the final message carries.
        state: Current position in the round.
        collected: Signatures gathered so far, in processing order.
    """

    wallet_address: WalletAddress
    threshold: int
    digest: bytes
    order: PendingOrder
    state: SessionState
    collected: List[CollectedSignature]

    def __init__(
        self,
        wallet_address: WalletAddress,
        threshold: int,
        digest: bytes,
        order: PendingOrder,
        resolver: Optional[KeyResolver] = None,
    ):
        if not 1 <= threshold <= MAX_PARTICIPANTS:
            raise InvalidThreshold(
                f"Threshold must be between 1 and {MAX_PARTICIPANTS}, got {threshold}",
                threshold,
            )
        if len(digest) != cells.HASH_LENGTH:
            raise InvalidDigestLength(len(digest), cells.HASH_LENGTH)

        self.wallet_address = wallet_address
        self.threshold = threshold
        self.digest = bytes(digest)
        self.order = order
        self.resolver = resolver or KeyResolver()
        self.state = SessionState.IDLE
        self.collected = []

    def run(self, participants: Sequence[Participant]) -> FinalMessage:
        """Process the participants and return the final message.

        Raises:
            SessionStateError: If the session already ran.
            CoSignError: Whatever aborted the round. Any exception leaves the
                session in ``ABORTED`` with no collected signatures.
        """
        if self.state is not SessionState.IDLE:
            raise SessionStateError(f"Session is {self.state.value}, expected idle")

        try:
            self._transition(SessionState.COLLECTING_KEYS)
            signing = self._validate(participants)

            self._transition(SessionState.COLLECTING_SIGNATURES)
            for participant in signing[:-1]:
                with self._signer(participant) as signer:
                    self._collect(participant, signer)

            final = signing[-1]
            with self._signer(final) as signer:
                self._collect(final, signer)
                self._transition(SessionState.FINALIZING)
                message = self._finalize(final.index, signer)
        except Exception:
            self._transition(SessionState.ABORTED)
            self.collected = []
            raise

        self._transition(SessionState.DONE)
        return message

    def _transition(self, state: SessionState) -> None:
        logging.debug(f"session {self.wallet_address}: {self.state.value} -> {state.value}")
        self.state = state

    def _validate(self, participants: Sequence[Participant]) -> List[Participant]:
        if len(participants) < self.threshold:
            raise InsufficientSignatures(len(participants), self.threshold)
        if len(participants) > self.threshold:
            logging.warning(
                f"{len(participants)} participants declared for a threshold of "
                f"{self.threshold}, ignoring the last {len(participants) - self.threshold}"
            )

        signing = list(participants[: self.threshold])
        seen = set()
        for participant in signing:
            validate_index(participant.index)
            if participant.index in seen:
                raise DuplicateParticipantIndex(participant.index)
            seen.add(participant.index)
        return signing

    def _signer(self, participant: Participant) -> Signer:
        signer = Signer(
            self.resolver.resolve(
                participant.phrase,
                participant.scheme,
                participant.account_index,
                participant.address,
            )
        )
        logging.info(f"participant {participant.index} resolved to {signer.address}")
        return signer

    def _collect(self, participant: Participant, signer: Signer) -> None:
        signature = signer.sign_digest(self.digest)
        self.collected.append(CollectedSignature(signature, participant.index))
        logging.info(
            f"collected signature {len(self.collected)}/{self.threshold} "
            f"from participant {participant.index}"
        )

    def _finalize(self, final_signer_index: int, signer: Signer) -> FinalMessage:
        if len(self.collected) < self.threshold:
            raise InsufficientSignatures(len(self.collected), self.threshold)
        message = build_authorization(final_signer_index, self.collected, self.order, signer)
        logging.info(
            f"authorization for {self.wallet_address} signed by participant {final_signer_index}"
        )
        return message


class _StaticResolver(KeyResolver):
    """Resolves participants to pre-generated keys, keyed by phrase."""

    def __init__(self, keys):
        super().__init__(ResolverConfig(max_index=1))
        self.keys = keys
        self.calls = []

    def resolve(self, phrase, scheme, account_index=None, target_address=None) -> ResolvedKey:
        self.calls.append(phrase)
        if phrase not in self.keys:
            raise KeyNotFound(str(target_address), 1)
        key_pair = self.keys[phrase].key_pair()
        return ResolvedKey(key_pair, WalletAddress.from_key(key_pair.public_key), scheme)


class Test(unittest.TestCase):
    ORDER_BOC = (
        "b5ee9c7241010201004800011e00008e388cae08ac0000000100000301006842000d4657ab40e2a465a4"
        "a8b16229e180b483bd4ca12ff56e88288cbc34dbfa4f9f202faf080000000000000000000000000000"
        "d7be5224"
    )
    DIGEST = bytes.fromhex("8da63e8b87b37ae43c83787be78b6cb66eb914b3fd487a20fb33ed4ac60a5bc7")
    WALLET = WalletAddress(0, b"\x3b" * 32)

    def setUp(self):
        self.keys = {f"phrase {i}": PrivateKey.random() for i in range(3)}
        self.resolver = _StaticResolver(self.keys)
        self.order = PendingOrder.from_boc(self.ORDER_BOC)

    def participant(self, i: int, index: Optional[int] = None) -> Participant:
        key_pair = self.keys[f"phrase {i}"].key_pair()
        return Participant(
            DerivationScheme.STANDARD,
            f"phrase {i}",
            WalletAddress.from_key(key_pair.public_key),
            i if index is None else index,
        )

    def session(self, threshold: int) -> CoSigningSession:
        return CoSigningSession(self.WALLET, threshold, self.DIGEST, self.order, self.resolver)

    def test_two_of_two(self):
        session = self.session(2)
        message = session.run([self.participant(0), self.participant(1)])

        self.assertIs(session.state, SessionState.DONE)
        self.assertEqual([c.index for c in session.collected], [0, 1])
        self.assertEqual(message.payload.final_signer_index, 1)
        self.assertEqual(message.payload.chain, session.collected[:1])
        self.assertTrue(message.verify(self.keys["phrase 1"].public_key()))
        self.assertTrue(
            self.keys["phrase 0"]
            .public_key()
            .verify(self.DIGEST, message.payload.chain[0].signature)
        )

        expected = AuthorizationPayload.build(1, session.collected, self.order)
        self.assertEqual(expected.hash(), message.payload.hash())

    def test_threshold_one(self):
        message = self.session(1).run([self.participant(0)])
        self.assertEqual(message.payload.final_signer_index, 0)
        self.assertEqual(message.payload.chain, [])

    def test_extra_participants_ignored(self):
        session = self.session(2)
        with self.assertLogs(level="WARNING"):
            message = session.run([self.participant(2, 5), self.participant(0), self.participant(1)])
        self.assertEqual(message.payload.final_signer_index, 0)
        self.assertEqual([c.index for c in message.payload.chain], [5])
        self.assertEqual(self.resolver.calls, ["phrase 2", "phrase 0"])

    def test_declarations_untouched(self):
        participants = [self.participant(0), self.participant(1)]
        self.session(2).run(participants)
        self.assertEqual([p.phrase for p in participants], ["phrase 0", "phrase 1"])

    def test_retry_after_abort(self):
        first = self.participant(0)
        missing = Participant(DerivationScheme.LEDGER, "unknown", self.WALLET, 1)
        with self.assertRaises(KeyNotFound):
            self.session(2).run([first, missing])

        session = self.session(2)
        message = session.run([first, self.participant(1)])
        self.assertIs(session.state, SessionState.DONE)
        self.assertEqual(message.payload.final_signer_index, 1)
        self.assertEqual([c.index for c in message.payload.chain], [0])

    def test_unexpected_error_aborts(self):
        session = self.session(2)
        with unittest.mock.patch.object(
            self.resolver, "resolve", side_effect=RuntimeError("resolver crashed")
        ):
            with self.assertRaises(RuntimeError):
                session.run([self.participant(0), self.participant(1)])
        self.assertIs(session.state, SessionState.ABORTED)
        self.assertEqual(session.collected, [])
        with self.assertRaises(SessionStateError):
            session.run([self.participant(0), self.participant(1)])

    def test_invalid_threshold(self):
        for threshold in [0, -1, MAX_PARTICIPANTS + 1]:
            with self.assertRaises(InvalidThreshold):
                self.session(threshold)

    def test_invalid_digest(self):
        with self.assertRaises(InvalidDigestLength):
            CoSigningSession(self.WALLET, 1, b"\x00" * 16, self.order)

    def test_insufficient(self):
        session = self.session(3)
        with self.assertRaises(InsufficientSignatures):
            session.run([self.participant(0), self.participant(1)])
        self.assertIs(session.state, SessionState.ABORTED)
        self.assertEqual(self.resolver.calls, [])

    def test_duplicate_index(self):
        session = self.session(2)
        with self.assertRaises(DuplicateParticipantIndex) as cm:
            session.run([self.participant(0), self.participant(1, 0)])
        self.assertEqual(cm.exception.index, 0)
        self.assertIs(session.state, SessionState.ABORTED)

    def test_key_not_found_aborts(self):
        session = self.session(2)
        missing = Participant(DerivationScheme.LEDGER, "unknown", self.WALLET, 1)
        with self.assertRaises(KeyNotFound):
            session.run([self.participant(0), missing])
        self.assertIs(session.state, SessionState.ABORTED)
        self.assertEqual(session.collected, [])

    def test_single_use(self):
        session = self.session(1)
        session.run([self.participant(0)])
        with self.assertRaises(SessionStateError):
            session.run([self.participant(0)])


if __name__ == "__main__":
    unittest.main()
