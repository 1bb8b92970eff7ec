import pytest
from pydantic import ValidationError
from relax.schema import parse_docstring, schema


@schema
class Grid:
    """
    A model to represent a grid

    The grid is uniform.

    Fields
    ------

    nx:  number of zones along x
    ny:  number of zones along y
    """

    nx: int = 128
    ny: int = 64


def test_docstring_is_parsed():
    short, long, fields = parse_docstring(Grid)
    assert short == "A model to represent a grid"
    assert long == "The grid is uniform."
    assert fields == {"nx": "number of zones along x", "ny": "number of zones along y"}


def test_field_descriptions():
    assert Grid.describe("nx") == "number of zones along x"


def test_values_are_validated():
    assert Grid(nx=32).nx == 32
    with pytest.raises(ValidationError):
        Grid(nx=[42])


def test_bad_docstring_is_rejected():
    class Broken:
        """
        Broken model

        Fields
        ======
        """

    with pytest.raises(ValueError):
        schema(Broken)
