import pytest
from relax.kernel.parse_api import parse_api

code = """
PRIVATE double helper(double x)
{
    return x;
}

PUBLIC void my_1d_kernel(
    int ni,
    double *data, // :: $.shape == (ni,)
    double scale)
{
    FOR_EACH_1D(ni)
    {
        data[i] = scale * i;
    }
}

PUBLIC void my_2d_kernel(
    int ni,
    int nj,
    double *data) // :: $.shape == (ni, nj)
{
    FOR_EACH_1D(ni)
    {
        for (int j = 0; j < nj; ++j)
        {
            data[i * nj + j] = i + j;
        }
    }
}
"""


def test_public_kernels_are_found():
    api = parse_api(code)
    assert set(api) == {"my_1d_kernel", "my_2d_kernel"}


def test_kernel_rank_is_number_of_leading_ints():
    api = parse_api(code)
    assert api["my_1d_kernel"].rank == 1
    assert api["my_2d_kernel"].rank == 2


def test_arguments_and_constraints():
    args = parse_api(code)["my_1d_kernel"].args
    assert [a.name for a in args] == ["ni", "data", "scale"]
    assert [a.dtype for a in args] == ["int", "double*", "double"]
    assert args[1].constraint == "$.shape == (ni,)"
    assert args[2].constraint == ""


def test_jacobi_kernels_parse():
    from relax import jacobi

    with open(jacobi.__file__.replace(".py", ".c")) as f:
        api = parse_api(f.read())

    assert api["jacobi_kernel"].rank == 2
    assert api["jacobi_initialize_boundaries"].rank == 1
    assert [a.name for a in api["jacobi_kernel"].args] == [
        "nx",
        "ny",
        "a_new",
        "a",
        "l2_norm",
        "iy_start",
        "iy_end",
    ]


def test_unsupported_dtype_is_rejected():
    bad = """
PUBLIC void bad_kernel(
    int ni,
    float *data)
{
}
"""
    with pytest.raises(ValueError):
        parse_api(bad)


def test_rank_zero_is_rejected():
    bad = """
PUBLIC void bad_kernel(
    double *data)
{
}
"""
    with pytest.raises(ValueError):
        parse_api(bad)
