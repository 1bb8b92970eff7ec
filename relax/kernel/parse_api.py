"""
Analyzes C code intended for JIT-compilation to a kernel library.
"""

import re
from itertools import takewhile
from typing import NamedTuple, List

SUPPORTED_DTYPES = ("int", "double", "double*")
KERNEL_DECLARATION = re.compile(r"\s*PUBLIC\s+void\s+(?P<name>\w+)")
ARGUMENT_LINE = re.compile(
    r"\s*(?P<dtype>\w+\s*\**)\s*(?P<name>\w+)\s*[,\)]\s*(?://)?\s*(?P<comment>.*)"
)


class Argument(NamedTuple):
    dtype: str
    name: str
    constraint: str


class Symbol(NamedTuple):
    name: str
    args: List[Argument]

    @property
    def rank(self):
        """
        The number of leading integer arguments, which give the launch shape.
        """
        return len(list(takewhile(lambda arg: arg.dtype == "int", self.args)))

    def __str__(self):
        args = ", ".join(f"{a.name}: {a.dtype}" for a in self.args)
        return f"{self.name} (rank {self.rank}) ({args})"


def scan(lines):
    """
    Yield (event, value) pairs for kernel declarations found in `lines`.

    Events are `start_symbol` with the kernel name, `argument` with a
    (dtype, name, constraint) tuple, and `end_symbol` at the first line of a
    declaration that is not an argument.
    """
    in_declaration = False

    for line in lines:
        if in_declaration:
            match = ARGUMENT_LINE.match(line)

            if match is None:
                in_declaration = False
                yield "end_symbol", None
            else:
                constraint = match.group("comment").partition("::")[2]
                yield "argument", (
                    match.group("dtype").replace(" ", ""),
                    match.group("name"),
                    constraint.strip(),
                )
        else:
            match = KERNEL_DECLARATION.match(line)

            if match is not None:
                in_declaration = True
                yield "start_symbol", match.group("name")


def parse_api(code):
    """
    Parse a C-like source file to extract a public API.

    Public kernels are declared as :code:`PUBLIC void name(` with one
    argument per line. An argument line may end with a comment of the form
    :code:`// :: <expression>`, where `$` stands for the argument itself and
    other argument names are in scope, e.g. :code:`// :: $.shape == (ny, nx)`.

    This function returns a dictionary whose keys are the names of the public
    kernels in the code, and the values are `Symbol` instances listing the
    positional arguments. Arguments may only be int, double, or double*, and
    each kernel must lead with one to three int arguments (its rank).
    """
    api = dict()
    name, args = None, None

    for event, value in scan(code.splitlines()):
        if event == "start_symbol":
            name, args = value, list()
        elif event == "argument":
            args.append(Argument(*value))
        else:
            api[name] = Symbol(name=name, args=args)

    for symbol in api.values():
        if not 1 <= symbol.rank <= 3:
            raise ValueError(
                f"kernel {symbol.name} has rank {symbol.rank}, must be 1, 2, or 3"
            )
        for arg in symbol.args:
            if arg.dtype not in SUPPORTED_DTYPES:
                raise ValueError(
                    f"argument {arg.name} to {symbol.name} has unsupported "
                    f"type {arg.dtype}, must be one of {SUPPORTED_DTYPES}"
                )
    return api
