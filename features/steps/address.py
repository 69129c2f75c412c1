from behave import *

from ton_cosign.address import WalletAddress

# Use regular expressions
use_step_matcher("re")


@when("I parse the wallet address")
def when_parse_wallet_address(context):
    try:
        context.output = WalletAddress.from_str(context.input)
    except Exception as e:
        context.output = e


@when("I convert the address to a raw string")
def when_address_to_raw_string(context):
    context.output = WalletAddress.from_str(context.input).raw()


@when(
    "I convert the address to a (?P<flavor>bounceable|non-bounceable|testnet) string and parse it back"
)
def when_address_round_trip(context, flavor):
    text = context.input.to_str(
        bounceable=flavor == "bounceable", test_only=flavor == "testnet"
    )
    context.output = WalletAddress.from_str(text)
