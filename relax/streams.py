"""
Command streams and completion markers for the cpu, omp, and gpu modes.

A stream is an ordered queue of asynchronous work. A marker is recorded on a
stream and completes once all the work enqueued on that stream before it has
finished. Other streams, or the host, can then wait on the marker. Markers
are created once and re-recorded as often as needed.

In gpu mode these are thin wrappers around cupy streams and events. In the
host modes each stream is served by a dedicated worker thread, and a marker
holds the future of the last task enqueued on its stream at the time it was
recorded. Either way the calling code reads the same:

.. code-block:: python

    compute, copy = make_stream(mode, "compute"), make_stream(mode, "copy")
    done = make_marker(mode, "compute-done")

    compute.launch(kernel, *args)
    done.record(compute)
    copy.wait(done)
    copy.launch(copy_to_host)
"""

from concurrent.futures import ThreadPoolExecutor
from logging import getLogger

logger = getLogger(__name__)


class HostStream:
    """
    An in-order queue of host work executed by a single worker thread.

    If a task raises an exception, the stream is poisoned: every task
    enqueued after it re-raises the same exception, so the failure surfaces
    wherever the stream, or any marker recorded on it, is next waited on.
    """

    def __init__(self, name):
        self.name = name
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"stream-{name}"
        )
        self._tail = None
        self._error = None

    def __repr__(self):
        return f"<HostStream {self.name}>"

    def _run(self, func, args):
        if self._error is not None:
            raise self._error
        try:
            return func(*args)
        except Exception as e:
            self._error = e
            logger.error(f"task on stream {self.name} failed: {e}")
            raise

    @property
    def tail(self):
        """
        The future of the most recently enqueued task, or None.
        """
        return self._tail

    def launch(self, func, *args):
        """
        Enqueue `func(*args)` to run after all work previously enqueued here.
        """
        self._tail = self._executor.submit(self._run, func, args)
        return self._tail

    def wait(self, marker):
        """
        Make all work enqueued after this call wait for the given marker.
        """
        future = marker.observe()

        if future is not None:
            self.launch(future.result)

    def synchronize(self):
        """
        Block the host until all enqueued work has finished.
        """
        if self._tail is not None:
            self._tail.result()

    def close(self):
        self._executor.shutdown(wait=True)


class HostMarker:
    """
    Completion marker for a `HostStream`.
    """

    def __init__(self, name):
        self.name = name
        self.num_records = 0
        self.num_waits = 0
        self._future = None

    def __repr__(self):
        return f"<HostMarker {self.name} records={self.num_records} waits={self.num_waits}>"

    def record(self, stream):
        self._future = stream.tail
        self.num_records += 1

    def observe(self):
        """
        Return the future to wait on, counting the wait if the marker was
        ever recorded. A never-recorded marker is complete.
        """
        if self.num_records:
            self.num_waits += 1
        return self._future

    def synchronize(self):
        """
        Block the host until the marker completes.
        """
        future = self.observe()

        if future is not None:
            future.result()


class DeviceStream:
    """
    A non-blocking cupy stream.

    Work is enqueued by running it inside the stream context, so kernels,
    fills, and copies issued by `func` land on this stream.
    """

    def __init__(self, name):
        from cupy.cuda import Stream

        self.name = name
        self.stream = Stream(non_blocking=True)

    def __repr__(self):
        return f"<DeviceStream {self.name}>"

    def launch(self, func, *args):
        with self.stream:
            return func(*args)

    def wait(self, marker):
        self.stream.wait_event(marker.observe())

    def synchronize(self):
        self.stream.synchronize()

    def close(self):
        pass


class DeviceMarker:
    """
    Completion marker for a `DeviceStream`, backed by a cupy event with
    timing disabled.
    """

    def __init__(self, name):
        from cupy.cuda import Event

        self.name = name
        self.num_records = 0
        self.num_waits = 0
        self.event = Event(disable_timing=True)

    def __repr__(self):
        return f"<DeviceMarker {self.name} records={self.num_records} waits={self.num_waits}>"

    def record(self, stream):
        self.event.record(stream.stream)
        self.num_records += 1

    def observe(self):
        if self.num_records:
            self.num_waits += 1
        return self.event

    def synchronize(self):
        self.observe().synchronize()


def make_stream(mode, name):
    """
    Return a command stream appropriate for the execution mode.
    """
    if mode in ["cpu", "omp"]:
        return HostStream(name)
    elif mode == "gpu":
        return DeviceStream(name)
    else:
        raise ValueError(f"unknown execution mode {mode}, must be [cpu|omp|gpu]")


def make_marker(mode, name):
    """
    Return a completion marker appropriate for the execution mode.
    """
    if mode in ["cpu", "omp"]:
        return HostMarker(name)
    elif mode == "gpu":
        return DeviceMarker(name)
    else:
        raise ValueError(f"unknown execution mode {mode}, must be [cpu|omp|gpu]")
