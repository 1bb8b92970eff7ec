"""
Jacobi relaxation of the 2-D Laplace equation with an overlapped,
double-buffered convergence check.
"""

__version__ = "0.1.0"
