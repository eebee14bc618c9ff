import random

from behave import given, then, use_step_matcher, when

from batch_sender.backoff import BackoffPolicy

# Use regular expressions
use_step_matcher("re")


@given(r"a backoff policy with base (?P<base>[0-9.]+)")
def given_backoff_policy(context, base: str):
    context.policy = BackoffPolicy(float(base), random.Random(42))


@when(r"I compute (?P<samples>\d+) delays for attempt (?P<attempt>\d+)")
def when_compute_delays(context, samples: str, attempt: str):
    context.delays = [context.policy.delay(int(attempt)) for _ in range(int(samples))]


@when(r"I compute the delay for attempt (?P<attempt>-?\d+)")
def when_compute_delay(context, attempt: str):
    try:
        context.output = context.policy.delay(int(attempt))
    except ValueError as e:
        context.output = e


@then(r"every delay should be at least (?P<low>[0-9.]+) and below (?P<high>[0-9.]+)")
def then_delays_between(context, low: str, high: str):
    for delay in context.delays:
        assert float(low) <= delay < float(high), f"{delay} not in [{low}, {high})"


@then("the delay should be rejected")
def then_delay_rejected(context):
    assert isinstance(context.output, ValueError), context.output
