"""
Run configuration for the Jacobi pipeline.
"""

from typing import Literal
from relax.schema import schema

SUPPORTED_NCCHECK = 1


class ConfigurationError(Exception):
    """An invalid runtime configuration"""


@schema
class Config:
    """
    Parameters of a Jacobi relaxation run

    Instances are type-checked on construction. Checks that depend on what
    the pipeline supports are made separately by `validate_config`.

    Fields
    ------

    nx:             grid width, including the two Dirichlet columns
    ny:             grid height, including the two periodic ghost rows
    iter_max:       maximum number of Jacobi iterations
    nccheck:        iterations between norm checks (only 1 is supported)
    csv:            print a single comma-separated record instead of text
    tol:            stop once the L2 norm of an update is at or below this
    mode:           execution mode
    report_cadence: iterations between progress lines in text mode
    nvtx:           annotate the solve with an NVTX range (gpu mode)
    debug:          validate kernel arguments on every launch
    """

    nx: int = 7168
    ny: int = 7168
    iter_max: int = 1000
    nccheck: int = 1
    csv: bool = False
    tol: float = 1.0e-8
    mode: Literal["cpu", "omp", "gpu"] = "cpu"
    report_cadence: int = 100
    nvtx: bool = False
    debug: bool = False

    @classmethod
    def from_namespace(cls, args):
        """
        Construct an instance from an argparse-type namespace object.

        Attributes that are missing or None keep their default values.
        """
        return cls(
            **{
                k: v
                for k, v in vars(args).items()
                if k in cls.__dataclass_fields__ and v is not None
            }
        )


def validate_config(config):
    """
    Raise a `ConfigurationError` if the pipeline cannot run this config.

    This must be called before any array module is imported or device
    resource is allocated.
    """
    if config.nccheck != SUPPORTED_NCCHECK:
        raise ConfigurationError(f"Only nccheck = {SUPPORTED_NCCHECK} is supported")
    if config.nx < 3 or config.ny < 3:
        raise ConfigurationError(
            f"grid must be at least 3 x 3, got {config.ny} x {config.nx}"
        )
    if config.iter_max < 0:
        raise ConfigurationError(f"iter_max must be non-negative, got {config.iter_max}")
    if config.tol < 0.0:
        raise ConfigurationError(f"tol must be non-negative, got {config.tol}")
    if config.report_cadence < 1:
        raise ConfigurationError(
            f"report_cadence must be positive, got {config.report_cadence}"
        )
