"""
Ping-pong grid storage for the Jacobi iteration.
"""


class GridState:
    """
    Two same-shape arrays holding the current and next iterate.

    The arrays live in a two-element arena and a single index says which one
    is current. Swapping flips the index; no data is copied.
    """

    def __init__(self, nx, ny, xp):
        self.nx = nx
        self.ny = ny
        self.iy_start = 1
        self.iy_end = ny - 1
        self.arena = (xp.zeros([ny, nx]), xp.zeros([ny, nx]))
        self.index = 0

    def __repr__(self):
        return f"<GridState {self.ny}x{self.nx} current={self.index}>"

    @property
    def current(self):
        return self.arena[self.index]

    @property
    def next(self):
        return self.arena[1 - self.index]

    def swap(self):
        self.index = 1 - self.index

    @property
    def num_interior_zones(self):
        return (self.nx - 2) * (self.iy_end - self.iy_start)
