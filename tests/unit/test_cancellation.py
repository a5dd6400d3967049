import threading
import time

import pytest
from unittest.mock import MagicMock

from querypanel.adapters.postgres import PostgresAdapter
from querypanel.common.cancellation import CancellationToken, raise_if_cancelled
from querypanel.common.errors import OperationCancelled
from querypanel.common.sandbox import run_cancellable


def test_without_token_runs_inline():
    caller = threading.get_ident()
    assert run_cancellable(lambda: threading.get_ident()) == caller


def test_returns_result_with_token():
    assert run_cancellable(lambda: 42, CancellationToken()) == 42


def test_exceptions_propagate_unchanged():
    def boom():
        raise KeyError("missing")

    with pytest.raises(KeyError):
        run_cancellable(boom, CancellationToken())


def test_already_cancelled_token_does_not_start_call():
    token = CancellationToken()
    token.cancel("stop")
    func = MagicMock()

    with pytest.raises(OperationCancelled, match="stop"):
        run_cancellable(func, token)

    func.assert_not_called()


def test_cancel_aborts_in_flight_call():
    # Arrange
    token = CancellationToken()
    release = threading.Event()
    timer = threading.Timer(0.1, token.cancel, args=("caller gave up",))

    # Act
    started = time.monotonic()
    timer.start()
    try:
        with pytest.raises(OperationCancelled, match="caller gave up"):
            run_cancellable(lambda: release.wait(5), token, "slow call")
    finally:
        release.set()
        timer.cancel()

    # Assert
    assert time.monotonic() - started < 2


def test_adapter_surfaces_cancellation_unwrapped():
    token = CancellationToken()
    token.cancel()
    adapter = PostgresAdapter(MagicMock())

    with pytest.raises(OperationCancelled):
        adapter.execute("SELECT 1", cancel_token=token)


def test_token_state():
    token = CancellationToken()
    assert not token.is_cancelled
    assert not token.wait(0.01)
    raise_if_cancelled(token)
    raise_if_cancelled(None)

    token.cancel("done")
    assert token.is_cancelled
    assert token.reason == "done"
    assert token.wait(0.01)
