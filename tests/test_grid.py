import numpy as np
from relax.grid import GridState


def test_grid_bounds():
    grid = GridState(nx=6, ny=5, xp=np)
    assert grid.current.shape == (5, 6)
    assert grid.iy_start == 1
    assert grid.iy_end == 4
    assert grid.num_interior_zones == 4 * 3


def test_swap_flips_roles_without_copying():
    grid = GridState(nx=4, ny=4, xp=np)
    a, b = grid.current, grid.next
    a[1, 1] = 7.0

    grid.swap()
    assert grid.current is b
    assert grid.next is a
    assert grid.next[1, 1] == 7.0

    grid.swap()
    assert grid.current is a
