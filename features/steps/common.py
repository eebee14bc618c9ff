import typing

from behave import given, then, use_step_matcher

from batch_sender.address import EvmAddress

# Use regular expressions
use_step_matcher("re")


@given(r"(?P<input_type>string|address|int|float) (?P<input_value>\S+)")
def given_input(context: typing.Any, input_type: str, input_value: str):
    context.input = parse_value(input_type, input_value)


@then(r"the result should be (?P<expected_type>[a-z]+) (?P<expected_value>\S+)")
def then_result(context: typing.Any, expected_type: str, expected_value: str):
    expected_val = parse_value(expected_type, expected_value)
    assert context.output == expected_val, (
        "Expected " + str(expected_val) + " but got " + str(context.output)
    )


def parse_value(value_type: str, value: str) -> typing.Any:
    if value_type == "bool":
        return value == "true"
    elif value_type == "int":
        return int(value)
    elif value_type == "float":
        return float(value)
    elif value_type == "address":
        return EvmAddress.from_str_relaxed(value)
    elif value_type == "string":
        return value.removeprefix('"').removesuffix('"')
    else:
        raise Exception("Unrecognized input type")
