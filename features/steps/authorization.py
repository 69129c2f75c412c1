from behave import *

from ton_cosign.account import Signer
from ton_cosign.authorization import (
    AuthorizationPayload,
    CollectedSignature,
    PendingOrder,
    build_authorization,
    build_chain,
)

# Use regular expressions
use_step_matcher("re")

ORDER_BOC = (
    "b5ee9c7241010201004800011e00008e388cae08ac0000000100000301006842000d4657ab40e2a465a4"
    "a8b16229e180b483bd4ca12ff56e88288cbc34dbfa4f9f202faf080000000000000000000000000000"
    "d7be5224"
)
RAW_TX_HASH = bytes.fromhex("8da63e8b87b37ae43c83787be78b6cb66eb914b3fd487a20fb33ed4ac60a5bc7")


def collect(indices):
    signatures = []
    for index in indices:
        with Signer.generate() as signer:
            signatures.append(CollectedSignature(signer.sign_digest(RAW_TX_HASH), index))
    return signatures


@when("I build the signature chain excluding participant (?P<final>[0-9]+)")
def when_build_chain(context, final):
    node = build_chain(collect(context.input), int(final))
    indices = []
    while node is not None:
        node_slice = node.begin_parse()
        node_slice.read_bytes(64)
        indices.append(node_slice.read_uint(8))
        node = node_slice.read_ref() if node_slice.read_bit() else None
    context.output = indices


@when(
    "I authorize the order as participant (?P<final>[0-9]+) and decode the message"
)
def when_authorize_and_decode(context, final):
    with Signer.generate() as signer:
        message = build_authorization(
            int(final), collect(context.input), PendingOrder.from_boc(ORDER_BOC), signer
        )
        assert message.verify(signer.public_key)
    parsed = AuthorizationPayload.from_boc(message.to_boc(), signed=True)
    assert parsed.final_signer_index == int(final)
    assert parsed.order == PendingOrder.from_boc(ORDER_BOC)
    context.output = [collected.index for collected in parsed.chain]


@when("I sign the digest")
def when_sign_digest(context):
    try:
        with Signer.generate() as signer:
            context.output = len(signer.sign_digest(context.input).data())
    except Exception as e:
        context.output = e
