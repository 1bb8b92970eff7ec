import numpy as np
import pytest
from relax.norm import (
    INITIAL_HOST_NORM,
    ConvergenceBuffers,
    ConvergenceMonitor,
    NormSlot,
)
from relax.streams import HostStream


@pytest.fixture
def stream():
    s = HostStream("reset")
    yield s
    s.close()


def test_host_mirror_starts_at_sentinel():
    slot = NormSlot(0, np, "cpu")
    assert slot.read() == INITIAL_HOST_NORM
    assert slot.device[0] == 0.0


def test_copy_to_host_mirrors_device_value():
    slot = NormSlot(0, np, "cpu")
    slot.device[0] = 3.5
    slot.copy_to_host()
    assert slot.read() == 3.5


def test_reset_is_idempotent(stream):
    slot = NormSlot(1, np, "cpu")
    slot.device[0] = 2.0

    slot.reset(stream)
    slot.reset_done.synchronize()
    first = (slot.read(), slot.device[0])

    slot.reset(stream)
    slot.reset_done.synchronize()
    second = (slot.read(), slot.device[0])

    assert first == second == (0.0, 0.0)
    assert slot.reset_done.num_records == 2


def test_buffers_are_indexed_by_parity():
    buffers = ConvergenceBuffers(np, "cpu")
    assert buffers[0] is buffers[2]
    assert buffers[1] is buffers[7]
    assert buffers[0] is not buffers[1]
    assert set(buffers.markers()) == {
        "copy-done-0",
        "reset-done-0",
        "copy-done-1",
        "reset-done-1",
    }


def test_monitor_takes_square_root():
    monitor = ConvergenceMonitor(tol=1e-8)
    assert monitor.evaluate(0.25) == (0.5, True)
    assert monitor.evaluate(0.0) == (0.0, False)


def test_monitor_stops_at_tolerance():
    monitor = ConvergenceMonitor(tol=0.5)
    assert monitor.evaluate(0.25) == (0.5, False)
    assert monitor.evaluate(1.0) == (1.0, True)


def test_consume_reads_and_resets_slot(stream):
    monitor = ConvergenceMonitor(tol=1e-8)
    slot = NormSlot(0, np, "cpu")
    slot.device[0] = 4.0
    slot.copy_to_host()

    check = monitor.consume(3, slot, stream)
    slot.reset_done.synchronize()

    assert check.iteration == 3
    assert check.norm == 2.0
    assert check.keep_going
    assert slot.read() == 0.0
    assert slot.device[0] == 0.0
