from __future__ import annotations

import threading

from aiodesktopcast.models.types import ShutdownReason
from aiodesktopcast.server.shutdown import ShutdownSignal


class _CountingLoop:
    def __init__(self) -> None:
        self.runs = 0
        self.quits = 0
        self._stopped = threading.Event()

    def run(self) -> None:
        self.runs += 1
        self._stopped.wait(timeout=5)

    def quit(self) -> None:
        self.quits += 1
        self._stopped.set()


def test_only_first_message_is_delivered() -> None:
    loop = _CountingLoop()
    signal = ShutdownSignal(loop)

    assert signal.send(ShutdownReason.PIPELINE_ERROR, "encoder died")
    assert not signal.send(ShutdownReason.CLIENT_DISCONNECTED)
    assert not signal.send(ShutdownReason.PIPELINE_ERROR, "again")

    assert loop.quits == 1
    received = signal.received
    assert received is not None
    assert received.reason is ShutdownReason.PIPELINE_ERROR
    assert received.detail == "encoder died"


def test_loop_is_not_run_after_early_message() -> None:
    loop = _CountingLoop()
    signal = ShutdownSignal(loop)
    signal.send(ShutdownReason.CLIENT_DISCONNECTED)

    request = signal.run_until_received()
    assert loop.runs == 0
    assert request is not None
    assert request.reason is ShutdownReason.CLIENT_DISCONNECTED


def test_concurrent_senders_produce_one_quit() -> None:
    loop = _CountingLoop()
    signal = ShutdownSignal(loop)
    results: list[bool] = []
    lock = threading.Lock()

    def _send() -> None:
        sent = signal.send(ShutdownReason.CLIENT_DISCONNECTED)
        with lock:
            results.append(sent)

    threads = [threading.Thread(target=_send) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1
    assert loop.quits == 1


def test_dispatch_is_used_for_quit() -> None:
    loop = _CountingLoop()
    scheduled = []
    signal = ShutdownSignal(loop, scheduled.append)

    signal.send(ShutdownReason.CLIENT_DISCONNECTED)
    assert loop.quits == 0
    assert len(scheduled) == 1
    scheduled[0]()
    assert loop.quits == 1


def test_run_returns_once_message_arrives_from_another_thread() -> None:
    loop = _CountingLoop()
    signal = ShutdownSignal(loop)
    timer = threading.Timer(0.05, signal.send, args=(ShutdownReason.PIPELINE_ERROR,))
    timer.start()
    request = signal.run_until_received()
    timer.join()
    assert request is not None
    assert request.reason is ShutdownReason.PIPELINE_ERROR
