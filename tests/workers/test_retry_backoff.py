from trialgate.workers.tasks import retry


def test_retry_backoff_doubles_until_max(monkeypatch) -> None:
    monkeypatch.setattr(retry.random, "randint", lambda _a, _b: 0)

    delays = [
        retry.retry_backoff_seconds(next_retry_attempt=attempt, backoff_max_seconds=300)
        for attempt in (1, 2, 3, 4)
    ]

    assert delays == [1, 2, 4, 8]
    assert retry.retry_backoff_seconds(next_retry_attempt=12, backoff_max_seconds=300) == 300


def test_retry_backoff_jitter_never_exceeds_max(monkeypatch) -> None:
    monkeypatch.setattr(retry.random, "randint", lambda _a, b: b)

    assert retry.retry_backoff_seconds(next_retry_attempt=3, backoff_max_seconds=300) == 5
    assert retry.retry_backoff_seconds(next_retry_attempt=10, backoff_max_seconds=300) == 300
