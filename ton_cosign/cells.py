# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Bag-of-cells helpers for the TON co-signing toolkit.

TON stores every on-chain structure as a tree of cells: up to 1023 data bits
and up to four references to child cells. The cell engine itself comes from
``tonsdk.boc``, building with ``begin_cell()`` and parsing with
``Cell.begin_parse()``. This module only normalizes inputs (raw bytes, hex or
base64 text), enforces the cell limits the engine leaves unchecked, exports
cells in the flat bag-of-cells wire format and converts any failure of the
engine into :class:`~ton_cosign.errors.EncodingFailure`.

Examples:
    Loading and re-exporting an order::

        from ton_cosign import cells

        order = cells.load_boc("b5ee9c7241010201004800...")
        digest = cells.cell_hash(order)
        wire = cells.export(order)
"""

from __future__ import annotations

import base64
import binascii
import string
import unittest
from typing import Optional

from tonsdk.boc import Cell, begin_cell

from .errors import EncodingFailure

HASH_LENGTH = 32
MAX_CELL_BITS = 1023
MAX_CELL_REFS = 4

ENCODINGS = ("hex", "base64")

_HEX_DIGITS = frozenset(string.hexdigits)


def decode_bytes(value: bytes | str, encoding: Optional[str] = None) -> bytes:
    """Decode text input as hex or base64.

    Without an explicit ``encoding`` hex takes precedence: any even-length text
    made only of hex digits (optionally ``0x``-prefixed) is read as hex, and
    everything else as base64. Base64 text that happens to consist of hex
    digits only must therefore be passed with ``encoding="base64"``.

    Args:
        value: Raw bytes, a hex string, or a standard/url-safe base64 string.
        encoding: "hex" or "base64" to skip the detection.

    Returns:
        The decoded bytes. Raw bytes are returned untouched.

    Raises:
        EncodingFailure: If the text is not valid in the requested (or any
            detected) encoding.
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if encoding is not None and encoding not in ENCODINGS:
        raise EncodingFailure(f"Unknown encoding {encoding!r}, expected one of {ENCODINGS}")

    text = value.strip()
    if encoding != "base64":
        hex_text = text[2:] if text[0:2] in ("0x", "0X") else text
        is_hex = bool(hex_text) and len(hex_text) % 2 == 0 and set(hex_text) <= _HEX_DIGITS
        if is_hex:
            return bytes.fromhex(hex_text)
        if encoding == "hex":
            raise EncodingFailure(f"Input is not hex: {value!r}")

    try:
        padded = text + "=" * (-len(text) % 4)
        return base64.b64decode(padded.replace("-", "+").replace("_", "/"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncodingFailure(f"Input is neither hex nor base64: {value!r}") from e


def load_boc(value: bytes | str) -> Cell:
    """Parse a serialized bag of cells and return its root cell."""
    data = decode_bytes(value)
    try:
        return Cell.one_from_boc(data)
    except Exception as e:
        raise EncodingFailure(f"Malformed bag of cells: {e}") from e


def cell_hash(cell: Cell) -> bytes:
    """Return the 32-byte representation hash of a cell."""
    try:
        return bytes(cell.bytes_hash())
    except Exception as e:
        raise EncodingFailure(f"Unable to hash cell: {e}") from e


def export(cell: Cell) -> bytes:
    """Serialize a cell tree to the flat bag-of-cells format (no index, with crc32)."""
    try:
        return bytes(cell.to_boc(has_idx=False))
    except Exception as e:
        raise EncodingFailure(f"Unable to serialize cell: {e}") from e


def bit_length(cell: Cell) -> int:
    """Number of data bits stored in ``cell``."""
    return cell.bits.cursor


def check_limits(cell: Cell) -> Cell:
    """Reject a cell that exceeds the data bit or reference limit.

    The engine refuses to write past 1023 bits but happily accepts a fifth
    reference, which the network would reject.

    Returns:
        The same cell, for chaining.

    Raises:
        EncodingFailure: If either limit is exceeded.
    """
    if bit_length(cell) > MAX_CELL_BITS:
        raise EncodingFailure(
            f"Cell holds {bit_length(cell)} bits, the limit is {MAX_CELL_BITS}"
        )
    if len(cell.refs) > MAX_CELL_REFS:
        raise EncodingFailure(
            f"Cell holds {len(cell.refs)} references, the limit is {MAX_CELL_REFS}"
        )
    return cell


def copy_remainder(cell_slice, bit_count: int, ref_count: int) -> Cell:
    """Build a new cell from the next ``bit_count`` bits and ``ref_count`` refs of a slice.

    Args:
        cell_slice: A ``tonsdk.boc.Slice`` positioned at the first bit to copy.
        bit_count: Unread data bits left in the slice.
        ref_count: Unread references left in the slice.

    Raises:
        EncodingFailure: If the slice holds fewer bits or references.
    """
    try:
        builder = begin_cell()
        for _ in range(bit_count):
            builder.store_bit(int(cell_slice.read_bit()))
        for _ in range(ref_count):
            builder.store_ref(cell_slice.read_ref())
        return builder.end_cell()
    except (IndexError, ValueError) as e:
        raise EncodingFailure(f"Unexpected end of cell: {e}") from e


class Test(unittest.TestCase):
    def test_decode_bytes(self):
        self.assertEqual(decode_bytes(b"\x01\x02"), b"\x01\x02")
        self.assertEqual(decode_bytes("0102ff"), b"\x01\x02\xff")
        self.assertEqual(decode_bytes("0x0102ff"), b"\x01\x02\xff")
        self.assertEqual(decode_bytes("AQL/"), b"\x01\x02\xff")
        self.assertEqual(decode_bytes("AQL_"), b"\x01\x02\xff")
        with self.assertRaises(EncodingFailure):
            decode_bytes("not base64 at all!")

    def test_explicit_encoding(self):
        # "beef" is both valid hex and valid base64.
        self.assertEqual(decode_bytes("beef"), b"\xbe\xef")
        self.assertEqual(decode_bytes("beef", encoding="base64"), base64.b64decode("beef"))
        self.assertEqual(decode_bytes("beef", encoding="hex"), b"\xbe\xef")
        with self.assertRaises(EncodingFailure):
            decode_bytes("AQL/", encoding="hex")
        with self.assertRaises(EncodingFailure):
            decode_bytes("beef", encoding="utf8")

    def test_export_and_load(self):
        cell = begin_cell().store_uint(0xDEADBEEF, 32).store_bit(1).end_cell()
        wire = export(cell)
        self.assertEqual(cell_hash(load_boc(wire)), cell_hash(cell))
        self.assertEqual(cell_hash(load_boc(wire.hex())), cell_hash(cell))
        self.assertEqual(
            cell_hash(load_boc(base64.b64encode(wire).decode())), cell_hash(cell)
        )

    def test_hash_length(self):
        cell = begin_cell().store_uint(7, 8).end_cell()
        self.assertEqual(len(cell_hash(cell)), HASH_LENGTH)

    def test_check_limits(self):
        child = begin_cell().store_uint(1, 1).end_cell()
        full = begin_cell()
        for _ in range(MAX_CELL_REFS):
            full.store_ref(child)
        self.assertEqual(len(check_limits(full.end_cell()).refs), MAX_CELL_REFS)

        overfull = begin_cell()
        for _ in range(MAX_CELL_REFS + 1):
            overfull.store_ref(child)
        with self.assertRaises(EncodingFailure):
            check_limits(overfull.end_cell())

    def test_copy_remainder(self):
        child = begin_cell().store_uint(5, 3).end_cell()
        cell = (
            begin_cell()
            .store_uint(200, 8)
            .store_uint(0x1234, 13)
            .store_ref(child)
            .end_cell()
        )
        cell_slice = cell.begin_parse()
        self.assertEqual(cell_slice.read_uint(8), 200)
        rest = copy_remainder(cell_slice, bit_length(cell) - 8, 1)
        expected = begin_cell().store_uint(0x1234, 13).store_ref(child).end_cell()
        self.assertEqual(cell_hash(rest), cell_hash(expected))

        with self.assertRaises(EncodingFailure):
            copy_remainder(cell.begin_parse(), 0, 2)

    def test_malformed(self):
        with self.assertRaises(EncodingFailure):
            load_boc(b"\x00\x01\x02\x03")


if __name__ == "__main__":
    unittest.main()
