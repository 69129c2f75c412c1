# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Command-line interface for co-signing TON multisig orders.

Supported Commands:
- sign: Resolve every participant's key, collect the signatures and print the
  final authorization message.
- seqno: Query the current seqno of a wallet through TONX API.
- transfer: Sign a transfer out of a participant's own v4 wallet. The seqno is
  fetched through TONX API unless given.

Anything not passed as a flag is prompted for interactively; recovery phrases
are always read without echo unless they come from a participants file.

Examples:
    Fully interactive round::

        python -m ton_cosign.cli sign

    Scripted round::

        python -m ton_cosign.cli sign \\
            --wallet EQA73dVDgA1D... \\
            --threshold 2 \\
            --digest 8da63e8b87b37ae43c83787be78b6cb66eb914b3fd487a20fb33ed4ac60a5bc7 \\
            --order b5ee9c72410102010048... \\
            --participants-file participants.json \\
            --external

    The participants file holds one object per participant::

        [
            {"scheme": "standard", "phrase": "...", "address": "UQ...", "index": 0},
            {"scheme": "ledger", "address": "UQ...", "index": 1, "account_index": 3}
        ]

    A missing ``phrase`` is prompted for.

    Funding a transfer from a participant wallet::

        python -m ton_cosign.cli transfer \\
            --scheme ledger \\
            --address UQB7... \\
            --to EQA73dVDgA1D... \\
            --amount 0.05

Environment Variables:
    TON_COSIGN_MAX_INDEX: Derivation indices searched per participant.
    TON_COSIGN_WORKERS: Threads used by the index search.
    TON_COSIGN_LOG_LEVEL: Logging level when ``--verbose`` is not given.
    TONX_API_KEY: API key for the seqno and transfer commands.
    TONX_NETWORK: "mainnet" (default) or "testnet".
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import getpass
import io
import json
import logging
import os
import sys
import tempfile
import unittest
import unittest.mock
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from . import cells
from .account import Signer, WalletTransfer
from .address import WalletAddress
from .async_client import TonxClient
from .authorization import AuthorizationPayload, FinalMessage, PendingOrder
from .cosigner import CoSigningSession, Participant
from .errors import CoSignError, InvalidAddressFormat
from .mnemonic import DEFAULT_MAX_INDEX, DerivationScheme, KeyResolver, ResolverConfig


def resolver_config() -> ResolverConfig:
    """Build the index search configuration from the environment."""
    return ResolverConfig(
        max_index=int(os.getenv("TON_COSIGN_MAX_INDEX", DEFAULT_MAX_INDEX)),
        workers=int(os.getenv("TON_COSIGN_WORKERS", 1)),
    )


def configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else os.getenv("TON_COSIGN_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def address_value(indata: str) -> WalletAddress:
    try:
        return WalletAddress.from_str(indata)
    except InvalidAddressFormat as e:
        raise argparse.ArgumentTypeError(str(e)) from e


NANOTONS = Decimal(10) ** 9


def nano_value(indata: str) -> int:
    """Convert a TON amount such as "0.05" into nanotons."""
    try:
        amount = Decimal(indata.strip()) * NANOTONS
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Invalid amount {indata!r}")
    if amount < 0 or amount != amount.to_integral_value():
        raise argparse.ArgumentTypeError(f"Invalid amount {indata!r}")
    return int(amount)


def scheme_value(indata: str) -> DerivationScheme:
    try:
        return DerivationScheme(indata.strip().lower())
    except ValueError:
        choices = ", ".join(scheme.value for scheme in DerivationScheme)
        raise ValueError(f"Unknown scheme {indata!r}, expected one of {choices}")


def participant_from_dict(
    data: Dict[str, Any], read_secret: Callable[[str], str] = getpass.getpass
) -> Participant:
    """Build a participant from one entry of a participants file."""
    index = int(data["index"])
    phrase = data.get("phrase") or read_secret(f"Recovery phrase of participant {index}: ")
    account_index = data.get("account_index")
    return Participant(
        scheme_value(data.get("scheme", DerivationScheme.STANDARD.value)),
        phrase,
        data.get("address"),
        index,
        None if account_index is None else int(account_index),
    )


def load_participants(
    path: str, read_secret: Callable[[str], str] = getpass.getpass
) -> List[Participant]:
    """Read participants from a JSON file, prompting for any missing phrase.

    Raises:
        ValueError: If the file does not hold a list.
    """
    with open(path) as f:
        entries = json.load(f)
    if not isinstance(entries, list):
        raise ValueError(f"{path} must contain a JSON list of participants")
    return [participant_from_dict(entry, read_secret) for entry in entries]


def prompt_participants(
    count: int,
    read: Callable[[str], str] = input,
    read_secret: Callable[[str], str] = getpass.getpass,
) -> List[Participant]:
    """Ask for each of ``count`` participants in turn."""
    participants = []
    for position in range(count):
        print(f"Participant {position + 1} of {count}")
        scheme = scheme_value(read("  Scheme (standard, ledger, multichain): ") or "standard")
        address = read("  Wallet address: ").strip() or None
        index = int(read("  Index in the multisig: "))
        phrase = read_secret("  Recovery phrase: ")
        participants.append(Participant(scheme, phrase, address, index))
    return participants


def sign(
    wallet: WalletAddress,
    threshold: int,
    digest: bytes,
    order: PendingOrder,
    participants: List[Participant],
    resolver: Optional[KeyResolver] = None,
) -> FinalMessage:
    """Run one co-signing round and return the final message."""
    session = CoSigningSession(wallet, threshold, digest, order, resolver)
    return session.run(participants)


async def seqno(address: WalletAddress, api_key: str, network: str) -> int:
    """Fetch the seqno of ``address`` with a short-lived client."""
    client = TonxClient(api_key, network)
    try:
        return await client.seqno(address)
    finally:
        await client.close()


async def sign_transfer(
    parsed_args: argparse.Namespace,
    read_secret: Optional[Callable[[str], str]] = None,
) -> WalletTransfer:
    """Resolve the participant key and sign the transfer described by the flags.

    The seqno is fetched from the participant wallet when ``--seqno`` is not
    given, which needs TONX_API_KEY.
    """
    phrase = (read_secret or getpass.getpass)("Recovery phrase: ")
    with Signer.from_phrase(
        phrase,
        parsed_args.scheme or DerivationScheme.STANDARD,
        parsed_args.address,
        parsed_args.account_index,
        KeyResolver(resolver_config()),
    ) as signer:
        wallet_seqno = parsed_args.seqno
        if wallet_seqno is None:
            api_key = os.getenv("TONX_API_KEY")
            if not api_key:
                raise ValueError("Missing TONX_API_KEY environment variable, or pass --seqno")
            wallet_seqno = await seqno(
                signer.address, api_key, os.getenv("TONX_NETWORK", "mainnet")
            )
        logging.info(f"Signing transfer from {signer.address} at seqno {wallet_seqno}")
        return signer.transfer_message(
            parsed_args.to,
            parsed_args.amount,
            wallet_seqno,
            parsed_args.comment,
            bounce=not parsed_args.no_bounce,
        )


async def main(args: List[str]):
    parser = argparse.ArgumentParser(description="TON multisig co-signing CLI")
    parser.add_argument(
        "command",
        type=str,
        help="The command to execute",
        choices=["sign", "seqno", "transfer"],
    )
    parser.add_argument(
        "--wallet", help="Address of the multisig wallet", type=address_value
    )
    parser.add_argument("--threshold", help="Signatures the wallet requires", type=int)
    parser.add_argument("--digest", help="Raw transaction hash, hex or base64", type=str)
    parser.add_argument("--order", help="Pending order bag of cells, hex or base64", type=str)
    parser.add_argument(
        "--participants-file", help="JSON file describing the participants", type=str
    )
    parser.add_argument(
        "--external",
        help="Also print the external message wrapping the authorization",
        action="store_true",
    )
    parser.add_argument(
        "--address",
        help="Wallet address for seqno, or the participant wallet for transfer",
        type=address_value,
    )
    parser.add_argument(
        "--scheme", help="Derivation scheme of the phrase for transfer", type=scheme_value
    )
    parser.add_argument(
        "--account-index", help="Derivation index to use instead of searching", type=int
    )
    parser.add_argument("--to", help="Transfer destination", type=address_value)
    parser.add_argument("--amount", help="Transfer amount in TON", type=nano_value)
    parser.add_argument("--comment", help="Text comment attached to the transfer", type=str)
    parser.add_argument(
        "--seqno", help="Seqno of the participant wallet, fetched when omitted", type=int
    )
    parser.add_argument(
        "--no-bounce", help="Send the transfer as non-bounceable", action="store_true"
    )
    parser.add_argument("--verbose", help="Log debug output", action="store_true")
    parsed_args = parser.parse_args(args)

    configure_logging(parsed_args.verbose)

    if parsed_args.command == "seqno":
        if parsed_args.address is None:
            parser.error("Missing required argument '--address'")
        api_key = os.getenv("TONX_API_KEY")
        if not api_key:
            parser.error("Missing TONX_API_KEY environment variable")
        print(await seqno(parsed_args.address, api_key, os.getenv("TONX_NETWORK", "mainnet")))
        return

    if parsed_args.command == "transfer":
        if parsed_args.to is None:
            parser.error("Missing required argument '--to'")
        if parsed_args.amount is None:
            parser.error("Missing required argument '--amount'")
        try:
            transfer = await sign_transfer(parsed_args)
        except CoSignError as e:
            logging.error(f"Transfer aborted: {e}")
            parser.exit(1, f"{type(e).__name__}: {e}\n")
        except ValueError as e:
            parser.error(str(e))
        print(transfer.to_base64())
        return

    try:
        wallet = parsed_args.wallet or WalletAddress.from_str(
            input("Multisig wallet address: ").strip()
        )
        threshold = parsed_args.threshold
        if threshold is None:
            threshold = int(input("Threshold: "))
        digest = cells.decode_bytes(parsed_args.digest or input("Raw transaction hash: "))
        order = PendingOrder.from_boc(parsed_args.order or input("Order BOC: "))

        if parsed_args.participants_file is not None:
            participants = load_participants(parsed_args.participants_file)
        else:
            participants = prompt_participants(threshold)

        message = sign(
            wallet, threshold, digest, order, participants, KeyResolver(resolver_config())
        )
    except CoSignError as e:
        logging.error(f"Co-signing aborted: {e}")
        parser.exit(1, f"{type(e).__name__}: {e}\n")
    except (OSError, ValueError, KeyError) as e:
        parser.error(str(e))

    print(message.to_base64())
    if parsed_args.external:
        print(base64.b64encode(cells.export(message.external_message(wallet))).decode())


def run():
    asyncio.run(main(sys.argv[1:]))


class Test(unittest.IsolatedAsyncioTestCase):
    PHRASE = (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )
    DIGEST = "8da63e8b87b37ae43c83787be78b6cb66eb914b3fd487a20fb33ed4ac60a5bc7"
    ORDER_BOC = (
        "b5ee9c7241010201004800011e00008e388cae08ac0000000100000301006842000d4657ab40e2a465a4"
        "a8b16229e180b483bd4ca12ff56e88288cbc34dbfa4f9f202faf080000000000000000000000000000"
        "d7be5224"
    )
    WALLET = str(WalletAddress(0, b"\x3b" * 32))

    def participants_file(self, entries) -> str:
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as f:
            json.dump(entries, f)
        self.addCleanup(os.remove, f.name)
        return f.name

    def test_participant_from_dict(self):
        participant = participant_from_dict(
            {"scheme": "Ledger", "phrase": self.PHRASE, "index": 3, "account_index": "2"}
        )
        self.assertEqual(participant.scheme, DerivationScheme.LEDGER)
        self.assertEqual(participant.index, 3)
        self.assertEqual(participant.account_index, 2)
        self.assertIsNone(participant.address)

        prompted = participant_from_dict({"index": 0}, read_secret=lambda prompt: "secret")
        self.assertEqual(prompted.phrase, "secret")
        self.assertEqual(prompted.scheme, DerivationScheme.STANDARD)

        with self.assertRaises(ValueError):
            scheme_value("trezor")

    def test_prompt_participants(self):
        answers = iter(["multichain", "", "4"])
        with unittest.mock.patch("sys.stdout", new_callable=io.StringIO):
            participants = prompt_participants(
                1, read=lambda prompt: next(answers), read_secret=lambda prompt: self.PHRASE
            )
        self.assertEqual(participants[0].scheme, DerivationScheme.MULTICHAIN)
        self.assertEqual(participants[0].index, 4)
        self.assertEqual(participants[0].phrase, self.PHRASE)

    def test_resolver_config(self):
        with unittest.mock.patch.dict(
            os.environ, {"TON_COSIGN_MAX_INDEX": "25", "TON_COSIGN_WORKERS": "4"}
        ):
            config = resolver_config()
        self.assertEqual(config.max_index, 25)
        self.assertEqual(config.workers, 4)

    async def test_sign_command(self):
        path = self.participants_file(
            [{"scheme": "ledger", "phrase": self.PHRASE, "index": 7, "account_index": 1}]
        )
        args = [
            "sign",
            "--wallet", self.WALLET,
            "--threshold", "1",
            "--digest", self.DIGEST,
            "--order", self.ORDER_BOC,
            "--participants-file", path,
            "--external",
        ]
        with unittest.mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
            await main(args)

        lines = stdout.getvalue().split()
        self.assertEqual(len(lines), 2)
        parsed = AuthorizationPayload.from_boc(lines[0], signed=True)
        self.assertEqual(parsed.final_signer_index, 7)
        self.assertEqual(parsed.chain, [])

    async def test_sign_aborts(self):
        path = self.participants_file(
            [{"scheme": "ledger", "phrase": self.PHRASE, "index": 0}]
        )
        args = [
            "sign",
            "--wallet", self.WALLET,
            "--threshold", "2",
            "--digest", self.DIGEST,
            "--order", self.ORDER_BOC,
            "--participants-file", path,
        ]
        with unittest.mock.patch("sys.stderr", new_callable=io.StringIO) as stderr:
            with self.assertRaises(SystemExit) as cm:
                await main(args)
        self.assertEqual(cm.exception.code, 1)
        self.assertIn("InsufficientSignatures", stderr.getvalue())

    async def test_seqno_command(self):
        with unittest.mock.patch.dict(os.environ, {"TONX_API_KEY": "key"}):
            with unittest.mock.patch.object(
                TonxClient, "seqno", return_value=5
            ), unittest.mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
                await main(["seqno", "--address", self.WALLET])
        self.assertEqual(stdout.getvalue().strip(), "5")

    def test_nano_value(self):
        self.assertEqual(nano_value("0.05"), 50_000_000)
        self.assertEqual(nano_value("2"), 2_000_000_000)
        for bad in ["-1", "0.0000000001", "ten"]:
            with self.assertRaises(argparse.ArgumentTypeError):
                nano_value(bad)

    async def test_transfer_command(self):
        destination = WalletAddress(0, b"\x42" * 32)
        args = [
            "transfer",
            "--scheme", "ledger",
            "--account-index", "1",
            "--to", str(destination),
            "--amount", "0.05",
        ]
        with unittest.mock.patch.dict(os.environ, {"TONX_API_KEY": "key"}):
            with unittest.mock.patch.object(
                TonxClient, "seqno", return_value=3
            ) as fetched, unittest.mock.patch(
                "getpass.getpass", return_value=self.PHRASE
            ), unittest.mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
                await main(args)

        with Signer.from_phrase(
            self.PHRASE, DerivationScheme.LEDGER, account_index=1
        ) as signer:
            expected = signer.transfer_message(destination, 50_000_000, 3)
            fetched.assert_called_once_with(signer.address)
        self.assertEqual(stdout.getvalue().strip(), expected.to_base64())

    async def test_transfer_explicit_seqno(self):
        args = [
            "transfer",
            "--scheme", "ledger",
            "--account-index", "1",
            "--to", self.WALLET,
            "--amount", "1",
            "--seqno", "0",
            "--no-bounce",
        ]
        with unittest.mock.patch.dict(os.environ, {}, clear=True):
            with unittest.mock.patch.object(TonxClient, "seqno") as fetched, unittest.mock.patch(
                "getpass.getpass", return_value=self.PHRASE
            ), unittest.mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
                await main(args)
        fetched.assert_not_called()
        self.assertTrue(len(base64.b64decode(stdout.getvalue().strip())) > 64)

    async def test_transfer_invalid_phrase(self):
        args = ["transfer", "--to", self.WALLET, "--amount", "1", "--seqno", "0"]
        with unittest.mock.patch(
            "getpass.getpass", return_value="not a phrase"
        ), unittest.mock.patch("sys.stderr", new_callable=io.StringIO) as stderr:
            with self.assertRaises(SystemExit) as cm:
                await main(args)
        self.assertEqual(cm.exception.code, 1)
        self.assertIn("InvalidRecoveryPhrase", stderr.getvalue())


if __name__ == "__main__":
    run()
