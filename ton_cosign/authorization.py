# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Canonical authorization messages for TON multisig wallets.

Once enough participants signed the hash of a pending order, the last of them
assembles the message the multisig wallet accepts. The wallet expects a
single cell laid out as::

    signature:bits512          outer signature of the last signer
    signer_index:uint8         participant index of the last signer
    has_chain:bit              1 if earlier signatures follow
    chain:^SignatureNode       only when has_chain = 1
    order:<inline>             the order cell, bits and refs appended inline

    SignatureNode:
        signature:bits512
        signer_index:uint8
        has_next:bit
        next:^SignatureNode    only when has_next = 1

Everything after the outer signature is the *body*; the outer signature is
made over the representation hash of the body cell.

The chain is folded from the collected signatures in the order they were
collected, leaving out the last signer's own entry: the first collected
signature becomes the innermost node (``has_next = 0``) and every later one
wraps the node built so far. The last collected signature is therefore the
head referenced by the body. Reversing this fold yields a different cell and
the wallet rejects it.

Examples:
    Building and signing an authorization::

        from ton_cosign.authorization import CollectedSignature, PendingOrder, build_authorization

        order = PendingOrder.from_boc(order_boc_hex)
        signatures = [CollectedSignature(sig0, 0), CollectedSignature(sig1, 1)]
        message = build_authorization(1, signatures, order, signer)
        print(message.to_base64())

    Inspecting an exported body::

        parsed = AuthorizationPayload.from_boc(message.to_boc(), signed=True)
        print(parsed.final_signer_index, len(parsed.chain))
"""

from __future__ import annotations

import base64
import unittest
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from typing_extensions import Protocol

from tonsdk.boc import Cell, begin_cell
from tonsdk.contract import Contract

from . import cells
from .address import WalletAddress
from .ed25519 import PrivateKey, PublicKey, Signature
from .errors import (
    EncodingFailure,
    InvalidDigestLength,
    InvalidParticipantIndex,
)

INDEX_BITS = 8
MAX_PARTICIPANT_INDEX = 2**INDEX_BITS - 1


def validate_index(index: int) -> int:
    """Check that a participant index fits its 8-bit slot.

    Returns:
        The index, unchanged.

    Raises:
        InvalidParticipantIndex: If the index is outside 0..255.
    """
    if not 0 <= index <= MAX_PARTICIPANT_INDEX:
        raise InvalidParticipantIndex(
            f"Participant index {index} does not fit into {INDEX_BITS} bits", index
        )
    return index


@dataclass(frozen=True)
class CollectedSignature:
    """A participant's signature together with their index in the wallet."""

    signature: Signature
    index: int

    def __post_init__(self):
        if not isinstance(self.signature, Signature):
            object.__setattr__(self, "signature", Signature(self.signature))
        if len(self.signature.data()) != Signature.LENGTH:
            raise EncodingFailure(
                f"Signature of participant {self.index} must be {Signature.LENGTH} bytes"
            )
        validate_index(self.index)


class PendingOrder:
    """An already serialized order, carried as an uninterpreted cell."""

    cell: Cell

    def __init__(self, cell: Cell):
        self.cell = cell

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PendingOrder):
            return NotImplemented
        return self.hash() == other.hash()

    def __repr__(self) -> str:
        return f"PendingOrder({self.hash().hex()})"

    @staticmethod
    def from_boc(value: Union[bytes, str]) -> PendingOrder:
        """Load an order from a bag of cells given as bytes, hex or base64."""
        return PendingOrder(cells.load_boc(value))

    def hash(self) -> bytes:
        """The representation hash of the order cell."""
        return cells.cell_hash(self.cell)


def _node(collected: CollectedSignature, nested: Optional[Cell]) -> Cell:
    builder = begin_cell()
    builder.store_bytes(collected.signature.data())
    builder.store_uint(collected.index, INDEX_BITS)
    if nested is None:
        builder.store_bit(0)
    else:
        builder.store_bit(1)
        builder.store_ref(nested)
    return builder.end_cell()


def filter_chain(
    signatures: Iterable[CollectedSignature], exclude_index: int
) -> List[CollectedSignature]:
    """Drop every entry of ``exclude_index``, keeping the order of the rest.

    Entries sharing any other index are passed through untouched.
    """
    return [collected for collected in signatures if collected.index != exclude_index]


def build_chain(
    signatures: Iterable[CollectedSignature], exclude_index: int
) -> Optional[Cell]:
    """Fold the collected signatures into the nested signature chain.

    Args:
        signatures: Signatures in the order they were collected.
        exclude_index: Index of the participant producing the outer signature;
            their own entry never appears in the chain.

    Returns:
        The head cell of the chain, or None when nothing is left after the
        exclusion (the body then stores a single zero flag).
    """
    head: Optional[Cell] = None
    try:
        for collected in filter_chain(signatures, exclude_index):
            head = _node(collected, head)
    except Exception as e:
        raise EncodingFailure(f"Unable to build signature chain: {e}") from e
    return head


@dataclass
class AuthorizationPayload:
    """The unsigned body of an authorization message.

    Attributes:
        final_signer_index: Index of the participant signing the body.
        chain: The signatures nested in the body, innermost first.
        order: The pending order appended inline.
        cell: The body cell.
    """

    final_signer_index: int
    chain: List[CollectedSignature]
    order: PendingOrder
    cell: Cell = field(repr=False)

    @staticmethod
    def build(
        final_signer_index: int,
        signatures: Iterable[CollectedSignature],
        order: PendingOrder,
    ) -> AuthorizationPayload:
        """Lay out the body for ``final_signer_index``.

        Args:
            final_signer_index: Index of the participant who signs the body.
            signatures: Every collected signature in collection order.
            order: The pending order, appended inline after the chain.

        Raises:
            InvalidParticipantIndex: If ``final_signer_index`` does not fit 8 bits.
            EncodingFailure: If the body exceeds the cell limits, e.g. an order
                already using all four references while a chain is present.
        """
        validate_index(final_signer_index)
        signatures = list(signatures)
        chain = build_chain(signatures, final_signer_index)

        try:
            builder = begin_cell()
            builder.store_uint(final_signer_index, INDEX_BITS)
            if chain is None:
                builder.store_bit(0)
            else:
                builder.store_bit(1)
                builder.store_ref(chain)
            builder.store_cell(order.cell)
            body = builder.end_cell()
        except Exception as e:
            raise EncodingFailure(f"Unable to build authorization body: {e}") from e
        cells.check_limits(body)

        return AuthorizationPayload(
            final_signer_index,
            filter_chain(signatures, final_signer_index),
            order,
            body,
        )

    def hash(self) -> bytes:
        """The canonical digest the final signer signs."""
        return cells.cell_hash(self.cell)

    def to_boc(self) -> bytes:
        """Export the unsigned body as a bag of cells."""
        return cells.export(self.cell)

    @staticmethod
    def from_boc(value: Union[bytes, str], signed: bool = False) -> ParsedAuthorization:
        """Decode an exported body, or a whole final message when ``signed``.

        Args:
            value: The bag of cells as bytes, hex or base64.
            signed: Whether ``value`` starts with the outer signature, i.e. is
                a :class:`FinalMessage` rather than a bare body.

        Returns:
            The final signer index, the chain in collection order, the order
            carried inline and, when ``signed``, the outer signature.

        Raises:
            EncodingFailure: If the cells do not follow the authorization layout.
        """
        root = cells.load_boc(value)
        header_bits = (Signature.LENGTH * 8 if signed else 0) + INDEX_BITS + 1
        if cells.bit_length(root) < header_bits:
            raise EncodingFailure(
                f"Authorization needs at least {header_bits} bits, "
                f"found {cells.bit_length(root)}"
            )

        try:
            body = root.begin_parse()
            outer = Signature(body.read_bytes(Signature.LENGTH)) if signed else None
            final_signer_index = body.read_uint(INDEX_BITS)
            has_chain = body.read_bit()
            node = body.read_ref() if has_chain else None
            chain = _read_chain(node)
            order = cells.copy_remainder(
                body,
                cells.bit_length(root) - header_bits,
                len(root.refs) - (1 if has_chain else 0),
            )
        except (IndexError, ValueError) as e:
            raise EncodingFailure(f"Malformed authorization message: {e}") from e

        return ParsedAuthorization(final_signer_index, chain, PendingOrder(order), outer)


_NODE_BITS = Signature.LENGTH * 8 + INDEX_BITS + 1


def _read_chain(node: Optional[Cell]) -> List[CollectedSignature]:
    chain: List[CollectedSignature] = []
    while node is not None:
        if cells.bit_length(node) != _NODE_BITS:
            raise EncodingFailure(
                f"Signature node must hold {_NODE_BITS} bits, found {cells.bit_length(node)}"
            )
        node_slice = node.begin_parse()
        signature = Signature(node_slice.read_bytes(Signature.LENGTH))
        index = node_slice.read_uint(INDEX_BITS)
        chain.append(CollectedSignature(signature, index))
        node = node_slice.read_ref() if node_slice.read_bit() else None
    # Walking from the head visits the latest signature first.
    chain.reverse()
    return chain


@dataclass(frozen=True)
class ParsedAuthorization:
    """An authorization decoded back from its cells.

    Attributes:
        final_signer_index: Index of the participant who signed the body.
        chain: The nested signatures, in collection order.
        order: The pending order found after the chain.
        signature: The outer signature, when a whole final message was parsed.
    """

    final_signer_index: int
    chain: List[CollectedSignature]
    order: PendingOrder
    signature: Optional[Signature] = None


class FinalMessage:
    """The signed authorization, ready to be wrapped and broadcast.

    The outer signature is written straight in front of the body bits; it is
    not a separate field or reference.
    """

    signature: Signature
    payload: AuthorizationPayload
    cell: Cell

    def __init__(self, signature: Signature, payload: AuthorizationPayload):
        self.signature = signature
        self.payload = payload
        try:
            self.cell = (
                begin_cell().store_bytes(signature.data()).store_cell(payload.cell).end_cell()
            )
        except Exception as e:
            raise EncodingFailure(f"Unable to assemble final message: {e}") from e

    def __repr__(self) -> str:
        return (
            f"FinalMessage(signer={self.payload.final_signer_index}, "
            f"chain={len(self.payload.chain)}, signature={self.signature.hex()[:16]}...)"
        )

    def to_boc(self) -> bytes:
        """Export the signed message as a bag of cells, ready for broadcast."""
        return cells.export(self.cell)

    def to_base64(self) -> str:
        """The exported message in standard base64, as wallets and explorers expect."""
        return base64.b64encode(self.to_boc()).decode()

    def to_hex(self) -> str:
        """The exported message as lowercase hex."""
        return self.to_boc().hex()

    def verify(self, public_key: PublicKey) -> bool:
        """Check the outer signature against the body hash."""
        return public_key.verify(self.payload.hash(), self.signature)

    def external_message(self, wallet_address: WalletAddress) -> Cell:
        """Wrap the message into an inbound external message for the multisig wallet."""
        try:
            header = Contract.create_external_message_header(wallet_address.raw())
            return Contract.create_common_msg_info(header, None, self.cell)
        except Exception as e:
            raise EncodingFailure(f"Unable to build external message: {e}") from e


class DigestSigner(Protocol):
    """Anything able to sign a 32-byte digest, e.g. :class:`~ton_cosign.account.Signer`."""

    def sign_digest(self, digest: bytes) -> Signature:
        ...


def build_authorization(
    final_signer_index: int,
    signatures: Iterable[CollectedSignature],
    order: PendingOrder,
    signer: DigestSigner,
) -> FinalMessage:
    """Build the body, sign its hash with ``signer`` and assemble the message.

    Args:
        final_signer_index: Index of the participant owning ``signer``.
        signatures: Every collected signature in collection order, the final
            signer's own included; it is excluded from the chain.
        order: The pending order.
        signer: Signs the body hash.
    """
    payload = AuthorizationPayload.build(final_signer_index, signatures, order)
    signature = signer.sign_digest(payload.hash())
    return FinalMessage(signature, payload)


class _KeySigner:
    def __init__(self, private_key: PrivateKey):
        self.private_key = private_key

    def sign_digest(self, digest: bytes) -> Signature:
        if len(digest) != cells.HASH_LENGTH:
            raise InvalidDigestLength(len(digest))
        return self.private_key.sign(digest)


class Test(unittest.TestCase):
    ORDER_BOC = (
        "b5ee9c7241010201004800011e00008e388cae08ac0000000100000301006842000d4657ab40e2a465a4"
        "a8b16229e180b483bd4ca12ff56e88288cbc34dbfa4f9f202faf080000000000000000000000000000"
        "d7be5224"
    )
    RAW_TX_HASH = bytes.fromhex(
        "8da63e8b87b37ae43c83787be78b6cb66eb914b3fd487a20fb33ed4ac60a5bc7"
    )

    def setUp(self):
        self.order = PendingOrder.from_boc(self.ORDER_BOC)
        self.keys = [PrivateKey.random() for _ in range(4)]
        self.collected = [
            CollectedSignature(key.sign(self.RAW_TX_HASH), index)
            for index, key in enumerate(self.keys)
        ]

    def test_chain_fold_direction(self):
        chain = build_chain(self.collected[:3], exclude_index=3)
        head = chain.begin_parse()
        self.assertEqual(head.read_bytes(64), self.collected[2].signature.data())
        self.assertEqual(head.read_uint(8), 2)
        self.assertEqual(head.read_bit(), 1)
        middle = head.read_ref().begin_parse()
        self.assertEqual(middle.read_bytes(64), self.collected[1].signature.data())
        self.assertEqual(middle.read_uint(8), 1)
        self.assertEqual(middle.read_bit(), 1)
        leaf = middle.read_ref().begin_parse()
        self.assertEqual(leaf.read_bytes(64), self.collected[0].signature.data())
        self.assertEqual(leaf.read_uint(8), 0)
        self.assertEqual(leaf.read_bit(), 0)

    def test_chain_deterministic(self):
        first = build_chain(self.collected, exclude_index=1)
        second = build_chain(list(self.collected), exclude_index=1)
        self.assertEqual(cells.export(first), cells.export(second))
        reordered = build_chain(list(reversed(self.collected)), exclude_index=1)
        self.assertNotEqual(cells.cell_hash(first), cells.cell_hash(reordered))

    def test_empty_chain(self):
        self.assertIsNone(build_chain([], exclude_index=0))
        self.assertIsNone(build_chain(self.collected[:1], exclude_index=0))

    def test_excludes_only_final_index(self):
        duplicated = self.collected[:2] + [CollectedSignature(self.collected[0].signature, 0)]
        payload = AuthorizationPayload.build(1, duplicated, self.order)
        self.assertEqual([c.index for c in payload.chain], [0, 0])

        payload = AuthorizationPayload.build(5, self.collected, self.order)
        self.assertEqual(len(payload.chain), 4)

    def test_two_of_two(self):
        signatures = self.collected[:2]
        message = build_authorization(1, signatures, self.order, _KeySigner(self.keys[1]))

        expected_chain = _node(signatures[0], None)
        expected_body = (
            begin_cell()
            .store_uint(1, 8)
            .store_bit(1)
            .store_ref(expected_chain)
            .store_cell(self.order.cell)
            .end_cell()
        )
        self.assertEqual(message.payload.hash(), cells.cell_hash(expected_body))
        self.assertTrue(message.verify(self.keys[1].public_key()))
        self.assertFalse(message.verify(self.keys[0].public_key()))

        expected_message = (
            begin_cell()
            .store_bytes(message.signature.data())
            .store_cell(expected_body)
            .end_cell()
        )
        self.assertEqual(message.to_boc(), cells.export(expected_message))

    def test_threshold_one(self):
        message = build_authorization(
            0, self.collected[:1], self.order, _KeySigner(self.keys[0])
        )
        expected_body = (
            begin_cell().store_uint(0, 8).store_bit(0).store_cell(self.order.cell).end_cell()
        )
        self.assertEqual(message.payload.hash(), cells.cell_hash(expected_body))
        self.assertEqual(message.payload.chain, [])

    def test_round_trip(self):
        message = build_authorization(
            3, self.collected, self.order, _KeySigner(self.keys[3])
        )
        parsed = AuthorizationPayload.from_boc(message.to_boc(), signed=True)
        self.assertEqual(parsed.final_signer_index, 3)
        self.assertEqual(parsed.chain, self.collected[:3])
        self.assertEqual(parsed.signature, message.signature)
        self.assertEqual(parsed.order, self.order)

        parsed = AuthorizationPayload.from_boc(message.payload.to_boc())
        self.assertEqual(parsed.final_signer_index, 3)
        self.assertEqual(len(parsed.chain), 3)
        self.assertIsNone(parsed.signature)
        self.assertEqual(parsed.order, self.order)

        single = build_authorization(0, self.collected[:1], self.order, _KeySigner(self.keys[0]))
        parsed = AuthorizationPayload.from_boc(single.to_hex(), signed=True)
        self.assertEqual(parsed.chain, [])
        self.assertEqual(parsed.order, self.order)

        self.assertEqual(
            AuthorizationPayload.from_boc(message.to_base64(), signed=True).chain,
            self.collected[:3],
        )

    def test_order_inline(self):
        payload = AuthorizationPayload.build(0, self.collected[:1], self.order)
        # The order keeps its own refs after the (absent) chain reference.
        self.assertEqual(len(payload.cell.refs), len(self.order.cell.refs))

    def test_reference_limit(self):
        leaf = begin_cell().store_uint(1, 8).end_cell()
        builder = begin_cell().store_uint(7, 32)
        for _ in range(cells.MAX_CELL_REFS):
            builder.store_ref(leaf)
        full_order = PendingOrder(builder.end_cell())

        # Without a chain the body only carries the order's own refs.
        payload = AuthorizationPayload.build(0, self.collected[:1], full_order)
        self.assertEqual(len(payload.cell.refs), cells.MAX_CELL_REFS)
        with self.assertRaises(EncodingFailure):
            AuthorizationPayload.build(1, self.collected[:2], full_order)

    def test_malformed_chain(self):
        short_node = begin_cell().store_bytes(b"\x00" * 64).end_cell()
        body = (
            begin_cell()
            .store_uint(1, 8)
            .store_bit(1)
            .store_ref(short_node)
            .store_cell(self.order.cell)
            .end_cell()
        )
        with self.assertRaises(EncodingFailure):
            AuthorizationPayload.from_boc(cells.export(body))

        dangling = begin_cell().store_uint(1, 8).store_bit(1).end_cell()
        with self.assertRaises(EncodingFailure):
            AuthorizationPayload.from_boc(cells.export(dangling))

    def test_invalid_inputs(self):
        with self.assertRaises(InvalidParticipantIndex):
            CollectedSignature(self.collected[0].signature, 256)
        with self.assertRaises(EncodingFailure):
            CollectedSignature(b"\x00" * 63, 0)
        with self.assertRaises(InvalidParticipantIndex):
            AuthorizationPayload.build(-1, self.collected, self.order)
        with self.assertRaises(EncodingFailure):
            AuthorizationPayload.from_boc(cells.export(begin_cell().end_cell()))

    def test_external_message(self):
        message = build_authorization(
            1, self.collected[:2], self.order, _KeySigner(self.keys[1])
        )
        wallet = WalletAddress(0, b"\x11" * 32)
        external = message.external_message(wallet)
        self.assertTrue(len(cells.export(external)) > len(message.to_boc()) - 64)


if __name__ == "__main__":
    unittest.main()
