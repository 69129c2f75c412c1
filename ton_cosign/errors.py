# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Exception hierarchy for the TON co-signing toolkit.

Every failure raised by this package derives from :class:`CoSignError` so that
callers can abort an authorization round with a single ``except`` clause while
still being able to react to the specific cause. None of these errors are
recovered internally: a failed round is aborted and the operator restarts it.
"""

from __future__ import annotations

import unittest


class CoSignError(Exception):
    """Base class for all co-signing failures"""


class InvalidAddressFormat(CoSignError):
    """The supplied text is not a valid TON address"""

    address: str

    def __init__(self, message: str, address: str):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.address = address


class InvalidRecoveryPhrase(CoSignError):
    """The recovery phrase is not valid for the selected derivation scheme"""

    scheme: str

    def __init__(self, message: str, scheme: str):
        super().__init__(message)
        self.scheme = scheme


class InvalidThreshold(CoSignError):
    """The threshold is non-positive or exceeds the supported participant count"""

    threshold: int

    def __init__(self, message: str, threshold: int):
        super().__init__(message)
        self.threshold = threshold


class InvalidParticipantIndex(CoSignError):
    """The participant index does not fit the 8-bit slot of the wallet"""

    index: int

    def __init__(self, message: str, index: int):
        super().__init__(message)
        self.index = index


class KeyNotFound(CoSignError):
    """No derivation index within the search bound produced the target address"""

    target_address: str
    scanned: int

    def __init__(self, target_address: str, scanned: int):
        super().__init__(
            f"Could not find the keypair for the target address {target_address} "
            f"after scanning {scanned} indices"
        )
        self.target_address = target_address
        self.scanned = scanned


class InvalidDigestLength(CoSignError):
    """The digest handed to the signer is not a 32-byte hash"""

    length: int

    def __init__(self, length: int, expected: int = 32):
        super().__init__(f"Digest must be {expected} bytes, got {length}")
        self.length = length


class EncodingFailure(CoSignError):
    """The cell library rejected a structure while building, hashing or parsing it"""


class DuplicateParticipantIndex(CoSignError):
    """Two participants of the same round declared the same index"""

    index: int

    def __init__(self, index: int):
        super().__init__(f"Participant index {index} is declared more than once")
        self.index = index


class InsufficientSignatures(CoSignError):
    """Finalization was attempted before the threshold was reached"""

    collected: int
    threshold: int

    def __init__(self, collected: int, threshold: int):
        super().__init__(
            f"Threshold of {threshold} signatures not reached, only {collected} available"
        )
        self.collected = collected
        self.threshold = threshold


class SignerClosed(CoSignError):
    """The signer already released its secret key"""


class SessionStateError(CoSignError):
    """The co-signing session is not in a state that allows the requested step"""


class Test(unittest.TestCase):
    def test_hierarchy(self):
        for error in [
            InvalidAddressFormat("bad", "x"),
            InvalidThreshold("bad", 0),
            KeyNotFound("EQ...", 10),
            InvalidDigestLength(3),
            EncodingFailure("bad"),
            DuplicateParticipantIndex(1),
            InsufficientSignatures(1, 2),
        ]:
            self.assertIsInstance(error, CoSignError)

    def test_attributes(self):
        error = KeyNotFound("UQBUQSw", 1000)
        self.assertEqual(error.target_address, "UQBUQSw")
        self.assertEqual(error.scanned, 1000)
        self.assertIn("UQBUQSw", str(error))

        self.assertEqual(InvalidDigestLength(31).length, 31)
        self.assertEqual(DuplicateParticipantIndex(4).index, 4)


if __name__ == "__main__":
    unittest.main()
