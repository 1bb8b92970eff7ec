"""
Command line driver for the Jacobi relaxation benchmark.
"""

import sys
from logging import getLogger
from typing import NamedTuple
from pydantic import ValidationError
from relax import __version__ as version
from relax.config import Config, ConfigurationError, validate_config
from relax.kernel.system import (
    DeviceError,
    configure_build,
    log_system_info,
    measure_time,
)
from relax.pipeline import Pipeline

logger = getLogger(__name__)
user_build_config = dict()
log_handler = None

VALIDATION_TOLERANCE = 1e-8


class SolveResult(NamedTuple):
    """
    The outcome of `solve`: the pipeline state, the final grid as a host
    array, the wall-clock time of the solve in seconds, and the number of
    interior zones updated per iteration.
    """

    state: "PipelineState"
    solution: "numpy.ndarray"
    elapsed: float
    num_zones: int

    @property
    def mzps(self):
        """
        Throughput in million zone updates per second.
        """
        return self.num_zones * self.state.iterations / max(self.elapsed, 1e-12) * 1e-6


def header_line(config):
    return (
        f"Jacobi relaxation: {config.iter_max} iterations on "
        f"{config.ny} x {config.nx} mesh with norm check every "
        f"{config.nccheck} iterations"
    )


def progress_line(check):
    return f"{check.iteration:5d}, {check.norm:0.6f}"


def summary_line(config, elapsed):
    return f"{config.ny}x{config.nx}: 1 {config.mode.upper()}: {elapsed:8.4f} s"


def csv_line(config, elapsed):
    return (
        f"single_{config.mode}, {config.nx}, {config.ny}, "
        f"{config.iter_max}, {config.nccheck}, {elapsed:f}"
    )


def solve(config, report=None, kernels=None):
    """
    Run the pipeline for a configuration and return a `SolveResult`.

    The configuration is validated before any device resource is touched.
    If given, `report` is called with each convergence `Check`.
    """
    with Pipeline(config, kernels=kernels) as pipeline:
        with measure_time(config.mode) as elapsed:
            state = pipeline.run(report)
            seconds = elapsed()

        return SolveResult(
            state, pipeline.solution(), seconds, pipeline.grid.num_interior_zones
        )


def validate_solution(result):
    """
    Compare a solution against the numpy reference solver, run for the same
    number of iterations. Returns the maximum absolute difference.
    """
    import numpy as np
    from relax.reference import reference_solve

    ny, nx = result.solution.shape
    expected, _ = reference_solve(nx, ny, result.state.iterations)
    return float(np.max(np.abs(result.solution - expected)))


def init_logging(level):
    """
    Send log messages from the relax package to a rich console.

    When relax is used as a library, logging is not enabled by default
    (Python's `logging` module recommends that libraries should not install
    any event handlers). Calling this again replaces the handler installed
    by the previous call. Returns the console.
    """
    from rich.console import Console
    from rich.logging import RichHandler

    global log_handler

    console = Console()
    logger = getLogger("relax")

    if log_handler is not None:
        logger.removeHandler(log_handler)

    log_handler = RichHandler(omit_repeated_times=False, console=console)
    logger.addHandler(log_handler)
    logger.setLevel(level.upper())

    return console


def load_user_config():
    """
    Load build options from the `build` section of a .relax file in the
    current working directory, if there is one.
    """
    from configparser import ConfigParser, Error

    try:
        config = ConfigParser()
        config.read(".relax")

        try:
            for key, val in config["build"].items():
                user_build_config[key] = val
        except KeyError:
            pass

    except Error as e:
        raise ConfigurationError(e)


def make_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="relax",
        description="relax is a single-device Jacobi solver for the 2-D Laplace equation",
    )
    parser.add_argument(
        "-nx",
        metavar="N",
        type=int,
        dest="nx",
        help=Config.describe("nx"),
    )
    parser.add_argument(
        "-ny",
        metavar="N",
        type=int,
        dest="ny",
        help=Config.describe("ny"),
    )
    parser.add_argument(
        "-niter",
        metavar="N",
        type=int,
        dest="iter_max",
        help=Config.describe("iter_max"),
    )
    parser.add_argument(
        "-nccheck",
        metavar="N",
        type=int,
        dest="nccheck",
        help=Config.describe("nccheck"),
    )
    parser.add_argument(
        "-csv",
        action="store_true",
        dest="csv",
        help=Config.describe("csv"),
    )
    parser.add_argument(
        "--tol",
        metavar="T",
        type=float,
        help=Config.describe("tol"),
    )
    parser.add_argument(
        "--report-cadence",
        metavar="C",
        type=int,
        help=Config.describe("report_cadence"),
    )
    parser.add_argument(
        "--nvtx",
        action="store_true",
        default=None,
        help=Config.describe("nvtx"),
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help=Config.describe("debug"),
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="compare the solution against the numpy reference solver",
    )
    parser.add_argument(
        "--describe",
        action="store_true",
        help="print the run configuration and exit",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="logging level (default info, or warning with -csv)",
    )
    exec_group = parser.add_mutually_exclusive_group()
    exec_group.add_argument(
        "--mode",
        dest="mode",
        choices=Config.type_args("mode"),
        help=Config.describe("mode"),
    )
    exec_group.add_argument(
        "--use-omp",
        "-p",
        dest="mode",
        action="store_const",
        const="omp",
        help="multi-core with OpenMP",
    )
    exec_group.add_argument(
        "--use-gpu",
        "-g",
        dest="mode",
        action="store_const",
        const="gpu",
        help="gpu acceleration",
    )
    return parser


def main(argv=None):
    """
    General-purpose command line interface. Returns the process exit status.
    """
    args = make_parser().parse_args(argv)

    try:
        config = Config.from_namespace(args)
        console = init_logging(args.log_level or ("warning" if config.csv else "info"))

        if args.describe:
            console.print(next(config.rich_table(console, None)))
            return 0

        validate_config(config)
        load_user_config()
        configure_build(**user_build_config, execution_mode=config.mode)

        logger.info(f"relax {version}")
        log_system_info(config.mode)

        if not config.csv:
            print(header_line(config))

        def report(check):
            if not config.csv and check.iteration % config.report_cadence == 0:
                print(progress_line(check))

        result = solve(config, report=report)
        state = result.state

        logger.info(
            f"{state.iterations} iterations, final norm {state.final_norm}, "
            f"{'converged' if state.converged else 'not converged'}"
        )
        logger.info(f"throughput {result.mzps:0.3f} Mzps")

        if config.csv:
            print(csv_line(config, result.elapsed))
        else:
            print(summary_line(config, result.elapsed))

        if args.validate:
            error = validate_solution(result)

            if error > VALIDATION_TOLERANCE:
                logger.error(f"solution differs from reference by {error:.3e}")
                return 1
            logger.info(f"solution matches reference to {error:.3e}")

    except ValidationError as e:
        print(f"bad configuration: {e}", file=sys.stderr)
        return 255

    except ConfigurationError as e:
        print(f"bad configuration: {e}", file=sys.stderr)
        return 255

    except DeviceError as e:
        print(f"device error: {e}", file=sys.stderr)
        return 1

    except ModuleNotFoundError as e:
        print(f"unsatisfied dependency: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("")
        return 130

    return 0
