import pytest

from notes2comic.errors import ExtractionError, UnsupportedInputError
from notes2comic.steps import RetryingStepRunner, RetryPolicy


class Flaky:
    def __init__(self, failures, error=ExtractionError):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return value * 2


def _runner(max_attempts=3):
    delays = []
    runner = RetryingStepRunner(policy=RetryPolicy(max_attempts=max_attempts, base_delay=1.0), sleep=delays.append)
    return runner, delays


def test_retries_with_exponential_backoff():
    runner, delays = _runner()
    fn = Flaky(failures=2)

    assert runner.run("double", fn, 21) == 42
    assert fn.calls == 3
    assert delays == [1.0, 2.0]
    assert runner.records[0].attempts == 3
    assert runner.records[0].status == "completed"


def test_gives_up_after_max_attempts_and_reraises_last_error():
    runner, delays = _runner(max_attempts=2)
    fn = Flaky(failures=5)

    with pytest.raises(ExtractionError, match="failure 2"):
        runner.run("double", fn, 1)
    assert fn.calls == 2
    assert delays == [1.0]
    assert runner.records[0].status == "failed"


def test_non_retryable_error_is_raised_immediately():
    runner, delays = _runner()
    fn = Flaky(failures=1, error=UnsupportedInputError)

    with pytest.raises(UnsupportedInputError):
        runner.run("extract", fn, 1)
    assert fn.calls == 1
    assert delays == []


def test_records_every_step_in_order():
    runner, _ = _runner()
    runner.run("first", lambda: 1)
    runner.run("second", lambda: 2)
    assert runner.step_names() == ["first", "second"]


def test_delay_is_capped():
    policy = RetryPolicy(max_attempts=10, base_delay=1.0, multiplier=10.0, max_delay=30.0)
    assert policy.delay_for(1) == 1.0
    assert policy.delay_for(2) == 10.0
    assert policy.delay_for(3) == 30.0


def test_policy_requires_an_attempt():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
