"""
The asynchronous compute / norm-extraction pipeline.

Each iteration `k` runs the stencil kernel into norm slot `curr = (k + 1) % 2`
on the compute stream, while the norm of iteration `k - 1`, sitting in slot
`prev = k % 2`, is copied, read, and reset on the copy and reset streams. The
happens-before edges, per slot, are:

1. reset(slot) -> compute(slot): the compute stream waits on `reset_done`
2. compute(slot) -> copy(slot): the copy stream waits on `compute_done`
3. copy(slot) -> read(slot) -> reset(slot): the host waits on `copy_done`

The host blocks exactly once per iteration, in step 3, on the previous
iteration's copy. Two iterations of work can be in flight at once.
"""

from logging import getLogger
from math import sqrt
from typing import NamedTuple
from relax.config import validate_config
from relax.grid import GridState
from relax.jacobi import JacobiKernels
from relax.kernel.system import device_call, profiling_range, synchronize_device
from relax.norm import ConvergenceBuffers, ConvergenceMonitor
from relax.streams import make_stream, make_marker

logger = getLogger(__name__)


class PipelineState(NamedTuple):
    """
    Summary of a pipeline run.

    Fields
    ------

    iterations: number of Jacobi sweeps performed
    norm:       the last lagged norm evaluated by the monitor
    final_norm: the norm of the last sweep, read after the streams drained
    converged:  whether the last evaluated norm was within tolerance
    """

    iterations: int
    norm: float
    final_norm: float
    converged: bool


class Pipeline:
    """
    Drives Jacobi relaxation on one device with an overlapped norm check.

    The configuration is validated before anything is allocated. Resources
    (grid arrays, norm slots, streams, markers) are created once here and
    reused every iteration. Example:

    .. code-block:: python

        with Pipeline(Config(nx=512, ny=512)) as pipeline:
            for check in pipeline.checks():
                print(check.iteration, check.norm)
            pipeline.drain()
    """

    def __init__(self, config, kernels=None):
        validate_config(config)

        mode = config.mode
        self.config = config
        self.mode = mode

        with device_call("prepare jacobi kernels", mode):
            self.kernels = kernels or JacobiKernels(mode, debug=config.debug)

        xp = self.kernels.xp
        logger.info(f"allocate {config.ny}x{config.nx} grid for {mode} execution")

        with device_call("allocate grid", mode):
            self.grid = GridState(config.nx, config.ny, xp)

        with device_call("initialize boundaries", mode):
            self.kernels.initialize_boundaries(self.grid.current, self.grid.next)

        with device_call("create streams and norm buffers", mode):
            self.compute_stream = make_stream(mode, "compute")
            self.copy_stream = make_stream(mode, "copy")
            self.reset_stream = make_stream(mode, "reset")
            self.compute_done = make_marker(mode, "compute-done")
            self.buffers = ConvergenceBuffers(xp, mode)

        with device_call("synchronize device", mode):
            synchronize_device(mode)

        self.monitor = ConvergenceMonitor(config.tol)
        self.iteration = 0
        self.norm = None
        self.final_norm = None
        self.keep_going = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def streams(self):
        return (self.compute_stream, self.copy_stream, self.reset_stream)

    def markers(self):
        """
        Return a dictionary of every marker in the pipeline, keyed by name.
        """
        return {self.compute_done.name: self.compute_done, **self.buffers.markers()}

    def checks(self):
        """
        Generator that runs the main loop, yielding a `Check` after each
        norm evaluation.

        The loop ends when an evaluated norm is within tolerance or the
        iteration cap is reached. Call `drain` afterwards to wait for the
        work still in flight.
        """
        config = self.config
        grid = self.grid
        mode = self.mode
        compute = self.compute_stream
        copy = self.copy_stream
        reset = self.reset_stream

        while self.keep_going and self.iteration < config.iter_max:
            k = self.iteration
            prev = self.buffers[k]
            curr = self.buffers[k + 1]
            check = None

            with device_call("launch jacobi kernel", mode):
                compute.wait(curr.reset_done)
                compute.launch(
                    self.kernels.relax,
                    grid.next,
                    grid.current,
                    curr.device,
                    grid.iy_start,
                    grid.iy_end,
                )
                self.compute_done.record(compute)

            if k % config.nccheck == 0:
                with device_call("copy norm to host", mode):
                    copy.wait(self.compute_done)
                    copy.launch(curr.copy_to_host)
                    curr.copy_done.record(copy)

                with device_call("wait for norm copy", mode):
                    prev.copy_done.synchronize()

                with device_call("reset norm", mode):
                    check = self.monitor.consume(k, prev, reset)

                self.norm = check.norm
                self.keep_going = check.keep_going

            grid.swap()
            self.iteration += 1

            if check is not None:
                yield check

    def drain(self):
        """
        Wait for all streams to finish, then read the norm of the last sweep.
        """
        with device_call("synchronize streams", self.mode):
            for stream in self.streams:
                stream.synchronize()
            synchronize_device(self.mode)

        if self.iteration > 0:
            last = self.buffers[self.iteration]

            with device_call("wait for norm copy", self.mode):
                last.copy_done.synchronize()

            self.final_norm = sqrt(last.read())

        logger.info(f"pipeline drained after {self.iteration} iterations")

    def run(self, report=None):
        """
        Run the main loop to completion and return a `PipelineState`.

        If given, `report` is called with each `Check`.
        """
        with profiling_range("Jacobi solve", self.mode, enabled=self.config.nvtx):
            for check in self.checks():
                if report is not None:
                    report(check)
            self.drain()

        return self.state

    @property
    def state(self):
        return PipelineState(
            iterations=self.iteration,
            norm=self.norm,
            final_norm=self.final_norm,
            converged=self.norm is not None and not self.keep_going,
        )

    def solution(self):
        """
        Return the current iterate as a host array. Call `drain` first.
        """
        try:
            return self.grid.current.get()
        except AttributeError:
            return self.grid.current.copy()

    def close(self):
        for stream in self.streams:
            stream.close()
