from behave import then, use_step_matcher, when

from batch_sender.address import EvmAddress, EvmAddressValidator, ParseAddressError

# Use regular expressions
use_step_matcher("re")


@when("I parse the address")
def when_parse_address(context):
    try:
        context.output = EvmAddress.from_str(context.input)
    except ParseAddressError as e:
        context.output = e


@when("I leniently parse the address")
def when_parse_address_relaxed(context):
    try:
        context.output = EvmAddress.from_str_relaxed(context.input)
    except ParseAddressError as e:
        context.output = e


@when("I validate the address")
def when_validate_address(context):
    context.output = EvmAddressValidator().is_valid_address(context.input)


@when("I convert the address to a string")
def when_address_to_string(context):
    context.output = str(context.input)


@then("I should fail to parse the address")
def then_fail_address(context):
    assert isinstance(context.output, ParseAddressError), context.output
