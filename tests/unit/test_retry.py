import logging

import pytest

pytestmark = pytest.mark.unit


def test_status_failure_buckets():
    from secretsync.provider.retry import status_failure

    assert status_failure(404).kind == "not_found"
    assert status_failure(401).kind == "auth"
    assert status_failure(403).kind == "auth"
    assert status_failure(429, 3.0) == ("throttled", 3.0)
    assert status_failure(504).kind == "deadline"
    assert status_failure(500).kind == "unavailable"
    assert status_failure(422).kind == "argument"
    assert status_failure(None).kind == "unknown"


def test_backoff_delay_and_retry_after_parsing():
    from secretsync.provider.retry import Failure, backoff_delay, parse_retry_after

    assert backoff_delay(Failure("unavailable"), 1) == pytest.approx(0.2)
    assert backoff_delay(Failure("unavailable"), 3) == pytest.approx(0.8)
    assert backoff_delay(Failure("throttled"), 2) == 2.0
    assert backoff_delay(Failure("throttled", 7.0), 2) == 7.0
    assert backoff_delay(Failure("throttled", 0.0), 1) == 1.0
    assert parse_retry_after("12") == 12.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None
    assert parse_retry_after(None) is None


def test_call_with_retry_logs_retries_and_failure(caplog: pytest.LogCaptureFixture):
    from secretsync.core.errors import RemoteUnavailableError
    from secretsync.provider.retry import Failure, call_with_retry

    def _boom():
        raise OSError("down")

    log = logging.getLogger("secretsync.provider.test")
    sleeps = []
    with caplog.at_level(logging.WARNING, logger="secretsync.provider.test"):
        with pytest.raises(RemoteUnavailableError) as ei:
            call_with_retry(
                _boom,
                lambda exc: Failure("unavailable"),
                log=log,
                sleep=sleeps.append,
                provider="Test",
                op="put",
                secret="n",
            )

    assert isinstance(ei.value.__cause__, OSError)
    assert len(sleeps) == 3
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(warnings) == 3 and len(errors) == 1
    assert "attempt=1/3" in warnings[0].getMessage()
