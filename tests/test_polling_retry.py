import pytest

from job_applier.polling import wait_for
from job_applier.retry import retry


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_wait_for_returns_first_truthy_result():
    clock = FakeClock()
    answers = iter([None, [], ["card"]])
    assert wait_for(lambda: next(answers), timeout=5, interval=1, clock=clock, sleep=clock.sleep) == ["card"]
    assert clock.sleeps == [1, 1]


def test_wait_for_gives_up_at_the_deadline():
    clock = FakeClock()
    calls = []

    def probe():
        calls.append(clock.now)
        return None

    assert wait_for(probe, timeout=2, interval=0.5, clock=clock, sleep=clock.sleep) is None
    assert calls[-1] >= 2
    assert len(calls) == 5


def test_retry_recovers_from_transient_errors():
    sleeps = []
    attempts = []

    @retry(max_attempts=3, base_delay=1, jitter=False, retryable=(ConnectionError,), sleep=sleeps.append)
    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("reset")
        return "ok"

    assert flaky() == "ok"
    assert sleeps == [1, 2]


def test_retry_reraises_after_last_attempt():
    @retry(max_attempts=2, base_delay=1, jitter=False, retryable=(ConnectionError,), sleep=lambda s: None)
    def down():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        down()


def test_retry_ignores_other_errors():
    attempts = []

    @retry(max_attempts=3, retryable=(ConnectionError,), sleep=lambda s: None)
    def broken():
        attempts.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        broken()
    assert len(attempts) == 1
