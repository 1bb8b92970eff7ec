"""
Stencil-and-reduce kernels for Jacobi relaxation of the Laplace equation.

The C code lives beside this module in `jacobi.c`. It is compiled once per
execution mode by the kernel `Library`, and the GPU build is parameterized
around the thread block shape used by the block-level norm reduction.
"""

from logging import getLogger
from math import pi
from relax.kernel.library import Library

logger = getLogger(__name__)

BLOCK_DIM_X = 32
BLOCK_DIM_Y = 4


class JacobiKernels:
    """
    Adapter class to launch the jacobi C kernels on grid arrays.

    Kernels execute on the current stream: in gpu mode this is the cupy
    stream entered with :code:`with stream:`; in the host modes the call
    runs synchronously on whichever thread makes it.
    """

    def __init__(self, mode="cpu", debug=False):
        with open(__file__.replace(".py", ".c")) as f:
            code = f.read()

        self.mode = mode
        self.lib = Library(
            code,
            mode=mode,
            name="jacobi",
            debug=debug,
            define_macros=dict(BLOCK_DIM_X=BLOCK_DIM_X, BLOCK_DIM_Y=BLOCK_DIM_Y),
            thread_block_size={2: (BLOCK_DIM_X, BLOCK_DIM_Y)},
        )

    @property
    def xp(self):
        return self.lib.xp

    def initialize_boundaries(self, a, a_new):
        """
        Write the Dirichlet data sin(2 pi iy / (ny - 1)) to the left and
        right columns of both grid arrays.
        """
        ny, nx = a.shape
        self.lib.jacobi_initialize_boundaries[ny](a, a_new, nx, pi)

    def relax(self, a_new, a, l2_norm, iy_start, iy_end):
        """
        Write one Jacobi sweep of `a` into `a_new`, and add the sum of the
        squared updates to `l2_norm[0]`.
        """
        ny, nx = a.shape
        self.lib.jacobi_kernel[nx, ny](a_new, a, l2_norm, iy_start, iy_end)
