"""
Functions for querying compute capabilities, configuring JIT builds, and
guarding calls that touch device resources.
"""

import contextlib
import logging
import multiprocessing
import platform
import time
import traceback

logger = logging.getLogger(__name__)


build_config = {
    "enable_openmp": True,
    "extra_compile_args": [],
    "extra_link_args": [],
}


class DeviceError(Exception):
    """A device allocation, launch, copy, or synchronization call failed"""


def configure_build(
    enable_openmp=True,
    extra_compile_args=None,
    extra_link_args=None,
    execution_mode=None,
):
    """
    Initiate the `build_config` module-level variable.

    A default build configuration is inferred on MacOS or Linux. The keyword
    arguemnts may be Python objects, or strings to facilitate passing values
    right from a configparser instance.
    """

    if type(enable_openmp) is str:
        enable_openmp = {"True": True, "False": False}[enable_openmp]

    enable_openmp = enable_openmp and execution_mode == "omp"

    if type(extra_compile_args) is str:
        extra_compile_args = extra_compile_args.split()

    if type(extra_link_args) is str:
        extra_link_args = extra_link_args.split()

    if platform.system() == "Darwin":
        logger.info("configure JIT build for MacOS")
        sys_compile_args = ["-Xpreprocessor", "-fopenmp"]
        sys_link_args = ["-L/usr/local/lib", "-lomp"]
    elif platform.system() == "Linux":
        logger.info("configure JIT build for Linux")
        sys_compile_args = ["-fopenmp", "-std=c99"]
        sys_link_args = ["-fopenmp"]
    else:
        logger.info("configure JIT build for unknown system")
        sys_compile_args = []
        sys_link_args = []

    if enable_openmp:
        build_config["extra_compile_args"] = extra_compile_args or sys_compile_args
        build_config["extra_link_args"] = extra_link_args or sys_link_args
    else:
        build_config["extra_compile_args"] = extra_compile_args or []
        build_config["extra_link_args"] = extra_link_args or []

    build_config["enable_openmp"] = enable_openmp
    logger.info(f"OpenMP is {'enabled' if enable_openmp else 'disabled'}")


def get_array_module(mode):
    """
    Return either the numpy or cupy module, depending on the value of mode.

    If mode is "cpu" or "omp", then the `numpy` module is returned. Otherwise
    if mode is "gpu" then `cupy` is returned. The `cupy` documentation
    recommends assigning whichever module is returned to a variable called
    `xp`, and using that variable to access functions that are common to both,
    for example use :code:`xp.zeros(100)`.
    """
    if mode in ["cpu", "omp"]:
        import numpy

        return numpy
    elif mode == "gpu":
        import cupy

        return cupy
    else:
        raise ValueError(f"unknown execution mode {mode}, must be [cpu|omp|gpu]")


def synchronize_device(mode):
    """
    Block until all work issued to the device has completed.

    Host execution modes have nothing to wait for here; their streams are
    drained individually.
    """
    if mode == "gpu":
        from cupy.cuda.runtime import deviceSynchronize

        deviceSynchronize()


def log_system_info(mode):
    """
    Log relevant details of the system's compute capabilities.
    """
    if mode == "gpu":
        from cupy.cuda.runtime import getDeviceCount, getDeviceProperties

        num_devices = getDeviceCount()
        gpu_devices = ":".join(
            [getDeviceProperties(i)["name"].decode("utf-8") for i in range(num_devices)]
        )
        logger.info(f"gpu devices: {num_devices}x {gpu_devices}")
    logger.info(f"compute cores: {multiprocessing.cpu_count()}")


def device_error_types(mode):
    """
    Return the exception types that signal a failed device operation,
    including a failed JIT build of a kernel library.
    """
    if mode == "gpu":
        from cupy.cuda.compiler import CompileException
        from cupy.cuda.driver import CUDADriverError
        from cupy.cuda.memory import OutOfMemoryError
        from cupy.cuda.runtime import CUDARuntimeError

        return (
            CUDARuntimeError,
            CUDADriverError,
            OutOfMemoryError,
            CompileException,
            MemoryError,
        )
    else:
        from cffi import VerificationError

        return (VerificationError, MemoryError, OSError)


class device_call:
    """
    Context manager that turns device failures into a fatal `DeviceError`.

    The error message names the operation, the source location of the
    failing call, and the message reported by the device runtime. Example:

    .. code-block:: python

        with device_call("allocate grid", mode):
            a = xp.zeros([ny, nx])
    """

    def __init__(self, operation, mode):
        self.operation = operation
        self.mode = mode

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None or not isinstance(exc, device_error_types(self.mode)):
            return False

        where = traceback.extract_tb(tb, limit=1)[0]
        message = (
            f'{self.operation} in line {where.lineno} of file {where.filename} '
            f"failed with {type(exc).__name__}: {exc}"
        )
        logger.error(message)
        raise DeviceError(message) from exc


@contextlib.contextmanager
def profiling_range(name, mode, enabled=True, color_id=0):
    """
    Annotate a region of host code with an NVTX range in gpu mode.

    The range shows up on the timeline of profilers like Nsight Systems. In
    cpu and omp modes, or if `enabled` is false, this is a no-op.
    """
    if enabled and mode == "gpu":
        from cupy.cuda import nvtx

        nvtx.RangePush(name, color_id)
        try:
            yield
        finally:
            nvtx.RangePop()
    else:
        yield


@contextlib.contextmanager
def measure_time(mode: str) -> float:
    """
    A context manager to measure the execution time of a piece of code.

    Example:

    .. code-block:: python

        with measure_time(mode) as duration:
            expensive_function()
        print(f"execution took {duration()} seconds")
    """
    try:
        start = time.perf_counter()
        yield lambda: time.perf_counter() - start
    finally:
        synchronize_device(mode)
