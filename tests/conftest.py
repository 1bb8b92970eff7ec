import pytest
from relax.jacobi import JacobiKernels
from relax.kernel.system import configure_build


def gpu_available():
    try:
        import cupy

        return cupy.cuda.runtime.getDeviceCount() > 0
    except Exception:
        return False


requires_gpu = pytest.mark.skipif(
    not gpu_available(), reason="needs cupy and a CUDA device"
)


@pytest.fixture(scope="session")
def cpu_kernels():
    configure_build(execution_mode="cpu")
    return JacobiKernels("cpu", debug=True)


@pytest.fixture(scope="session")
def omp_kernels():
    configure_build(execution_mode="omp")
    return JacobiKernels("omp")


@pytest.fixture(scope="session")
def gpu_kernels():
    return JacobiKernels("gpu", debug=True)
