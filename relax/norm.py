"""
Double-buffered convergence accumulators, and the monitor that consumes them.
"""

from ctypes import c_void_p
from logging import getLogger
from math import sqrt
from typing import NamedTuple
from relax.streams import make_marker

logger = getLogger(__name__)

INITIAL_HOST_NORM = 1.0


class NormSlot:
    """
    One accumulator for the sum of squared residuals.

    The slot holds a one-element device array that the stencil kernel adds
    into, a host mirror of it (pinned memory in gpu mode), and two markers:
    `copy_done` is recorded after the device-to-host copy is enqueued, and
    `reset_done` after the device accumulator is cleared.
    """

    def __init__(self, index, xp, mode):
        self.index = index
        self.xp = xp
        self.mode = mode
        self.device = xp.zeros(1)

        if mode == "gpu":
            from cupyx import zeros_pinned

            self.host = zeros_pinned(1)
        else:
            self.host = xp.zeros(1)

        self.host[0] = INITIAL_HOST_NORM
        self.copy_done = make_marker(mode, f"copy-done-{index}")
        self.reset_done = make_marker(mode, f"reset-done-{index}")

    def __repr__(self):
        return f"<NormSlot {self.index}>"

    def copy_to_host(self):
        """
        Copy the device accumulator to the host mirror, on the current stream.
        """
        if self.mode == "gpu":
            stream = self.xp.cuda.get_current_stream()
            self.device.data.copy_to_host_async(
                c_void_p(self.host.ctypes.data), self.host.nbytes, stream
            )
        else:
            self.host[...] = self.device

    def clear_device(self):
        self.device.fill(0.0)

    def read(self):
        """
        Return the host mirror value. The caller must first wait on
        `copy_done`.
        """
        return float(self.host[0])

    def reset(self, stream):
        """
        Zero the host mirror now, and the device accumulator on `stream`.

        The `reset_done` marker is recorded on `stream`, and the next kernel
        to accumulate into this slot must wait on it.
        """
        self.host[0] = 0.0
        stream.launch(self.clear_device)
        self.reset_done.record(stream)


class ConvergenceBuffers:
    """
    The pair of norm slots, indexed by iteration parity.
    """

    def __init__(self, xp, mode):
        self.slots = (NormSlot(0, xp, mode), NormSlot(1, xp, mode))

    def __getitem__(self, index):
        return self.slots[index % 2]

    def __iter__(self):
        return iter(self.slots)

    def markers(self):
        """
        Return a dictionary of all the slot markers, keyed by name.
        """
        return {
            m.name: m for s in self.slots for m in (s.copy_done, s.reset_done)
        }


class Check(NamedTuple):
    """
    The outcome of one convergence check.

    `norm` is the L2 norm of the update made by iteration `iteration - 1`.
    """

    iteration: int
    norm: float
    keep_going: bool


class ConvergenceMonitor:
    """
    Consumes lagged norm values and decides whether to keep iterating.
    """

    def __init__(self, tol):
        self.tol = tol

    def evaluate(self, value):
        """
        Return the L2 norm for a sum of squared residuals, and whether it is
        still above tolerance.
        """
        norm = sqrt(value)
        return norm, norm > self.tol

    def consume(self, iteration, slot, reset_stream):
        """
        Read a copy-complete slot, evaluate its norm, and reset the slot for
        reuse.
        """
        norm, keep_going = self.evaluate(slot.read())
        slot.reset(reset_stream)
        return Check(iteration, norm, keep_going)
