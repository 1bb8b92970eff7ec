from math import pi, sin, sqrt
import numpy as np
import pytest
from relax.config import Config, ConfigurationError
from relax.pipeline import Pipeline
from relax.reference import initial_grid, reference_solve


def run_pipeline(config, kernels):
    with Pipeline(config, kernels=kernels) as pipeline:
        checks = list(pipeline.checks())
        pipeline.drain()
        return pipeline, checks, pipeline.solution()


def test_single_iteration_on_small_grid(cpu_kernels):
    config = Config(nx=8, ny=8, iter_max=1)
    pipeline, checks, a = run_pipeline(config, cpu_kernels)

    for iy in range(1, 7):
        y0 = sin(2.0 * pi * iy / 7)
        assert a[iy, 1] == pytest.approx(0.25 * y0, abs=1e-15)
        assert a[iy, 6] == pytest.approx(0.25 * y0, abs=1e-15)
        assert (a[iy, 2:6] == 0.0).all()

    a0 = initial_grid(8, 8)

    for iy in range(1, 7):
        for ix in range(1, 7):
            average = 0.25 * (
                a0[iy, ix + 1] + a0[iy, ix - 1] + a0[iy + 1, ix] + a0[iy - 1, ix]
            )
            assert a[iy, ix] == pytest.approx(average, abs=1e-15)

    assert (a[7, 1:7] == a[1, 1:7]).all()
    assert (a[0, 1:7] == a[6, 1:7]).all()

    assert len(checks) == 1
    assert checks[0].iteration == 0
    assert checks[0].norm == 1.0
    assert pipeline.state.iterations == 1
    assert pipeline.state.final_norm == pytest.approx(sqrt(0.4375), rel=1e-12)
    assert not pipeline.state.converged


def test_boundary_columns_are_fixed(cpu_kernels):
    nx, ny = 10, 12
    _, _, a = run_pipeline(Config(nx=nx, ny=ny, iter_max=5, tol=0.0), cpu_kernels)

    for iy in range(ny):
        y0 = sin(2.0 * pi * iy / (ny - 1))
        assert a[iy, 0] == pytest.approx(y0, abs=1e-15)
        assert a[iy, nx - 1] == pytest.approx(y0, abs=1e-15)


def test_lagged_norms_match_reference(cpu_kernels):
    nx, ny, n = 12, 10, 6
    pipeline, checks, a = run_pipeline(
        Config(nx=nx, ny=ny, iter_max=n, tol=0.0), cpu_kernels
    )
    expected_grid, expected_norms = reference_solve(nx, ny, n)

    assert [c.iteration for c in checks] == list(range(n))
    assert checks[0].norm == 1.0
    assert [c.norm for c in checks[1:]] == pytest.approx(expected_norms[:-1], rel=1e-12)
    assert pipeline.state.final_norm == pytest.approx(expected_norms[-1], rel=1e-12)
    assert np.abs(a - expected_grid).max() < 1e-14


def test_marker_records_and_waits_pair_up(cpu_kernels):
    pipeline, _, _ = run_pipeline(Config(nx=8, ny=8, iter_max=6, tol=0.0), cpu_kernels)
    markers = pipeline.markers()

    def counts(name):
        return markers[name].num_records, markers[name].num_waits

    assert counts("compute-done") == (6, 6)
    assert counts("copy-done-0") == (3, 3)
    assert counts("copy-done-1") == (3, 3)
    assert counts("reset-done-0") == (3, 3)
    assert counts("reset-done-1") == (3, 2)


def test_converges_before_iteration_cap(cpu_kernels):
    config = Config(nx=32, ny=32, iter_max=10000, tol=1e-8)

    with Pipeline(config, kernels=cpu_kernels) as pipeline:
        state = pipeline.run()

    assert state.converged
    assert state.iterations < config.iter_max
    assert state.norm <= 1e-8


def test_stops_at_iteration_cap(cpu_kernels):
    config = Config(nx=16, ny=16, iter_max=7, tol=1e-8)

    with Pipeline(config, kernels=cpu_kernels) as pipeline:
        reported = []
        state = pipeline.run(report=reported.append)

    assert state.iterations == 7
    assert len(reported) == 7
    assert not state.converged


def test_zero_iterations(cpu_kernels):
    with Pipeline(Config(nx=8, ny=8, iter_max=0), kernels=cpu_kernels) as pipeline:
        state = pipeline.run()

    assert state.iterations == 0
    assert state.norm is None
    assert state.final_norm is None


def test_omp_mode_matches_reference(omp_kernels):
    nx, ny, n = 24, 20, 10
    pipeline, checks, a = run_pipeline(
        Config(nx=nx, ny=ny, iter_max=n, tol=0.0, mode="omp"), omp_kernels
    )
    expected_grid, expected_norms = reference_solve(nx, ny, n)

    assert [c.norm for c in checks[1:]] == pytest.approx(expected_norms[:-1], rel=1e-10)
    assert np.abs(a - expected_grid).max() < 1e-14


def test_unsupported_nccheck_allocates_nothing(monkeypatch):
    import relax.pipeline

    def fail(*args, **kwargs):
        raise AssertionError("resources must not be touched")

    monkeypatch.setattr(relax.pipeline, "JacobiKernels", fail)
    monkeypatch.setattr(relax.pipeline, "GridState", fail)
    monkeypatch.setattr(relax.pipeline, "make_stream", fail)

    with pytest.raises(ConfigurationError):
        Pipeline(Config(nx=8, ny=8, nccheck=2))
