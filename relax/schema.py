"""
Configurable models for the purpose of app configuration

This module exports a `schema` decorator which builds on a Python dataclass
with validation via `pydantic`, and pretty printing via the `rich` module.

Short and long descriptions of the model, and field descriptions are read
from the class doc string, which must have the following format:

```python
@schema
class Grid:
    \"""
    A model to represent a grid

    Fields
    ------

    nx:  number of zones along x
    ny:  number of zones along y
    \"""

    nx: int = 128
    ny: int = 128
```

Instances of the `Grid` class will be type-validated on construction:

```python
grid = Grid(nx=64) # ok
grid = Grid(nx=[42]) # ValidationError
```
"""


def parse_docstring(cls):
    """
    Parse a schema docstring.
    """
    from textwrap import dedent

    cls_short_descr = str()
    cls_long_descr = list()
    field_descriptions = dict()
    lines = iter(dedent(cls.__doc__).splitlines())

    for line in lines:
        if "Fields" in line:
            if next(lines).strip() != "------":
                raise ValueError("expect a line of '-' below 'Fields'")
            if next(lines).strip():
                raise ValueError("expect a blank line below 'Fields'")
            break
        elif not cls_short_descr:
            cls_short_descr = line.strip()
        elif line:
            cls_long_descr.append(line.strip())

    for line in lines:
        if line:
            key, description = (x.strip() for x in line.split(":", 1))
            field_descriptions[key] = description

    return cls_short_descr, " ".join(cls_long_descr), field_descriptions


def schema_rich_table(d, console, options):
    """
    Returns a rich-renderable table generated from a schema.
    """
    from rich.table import Table

    fields = d.__dataclass_fields__
    short_descr = d.__schema__["short_descr"]
    long_descr = d.__schema__["long_descr"]

    table = Table(
        title=f"{d.__class__.__name__}: {short_descr.lower()}"
        if short_descr
        else d.__class__.__name__,
        caption=long_descr,
        caption_justify="left",
        title_justify="left",
        show_edge=True,
        show_lines=False,
        show_header=False,
        expand=True,
    )
    table.add_column("property", style="cyan")
    table.add_column("value", style="green")
    table.add_column("description", style="magenta")

    for key, field in fields.items():
        descr = field.metadata.get("description", None)
        table.add_row(key, str(getattr(d, key)), descr)

    yield table


def schema(cls):
    from pydantic import ConfigDict
    from pydantic.dataclasses import dataclass

    if cls.__doc__ is None:
        cls.__doc__ = " "

    cls = dataclass(frozen=True, config=ConfigDict(extra="forbid"))(cls)

    short_descr, long_descr, field_descriptions = parse_docstring(cls)
    fields = cls.__dataclass_fields__

    for key, description in field_descriptions.items():
        fields[key].metadata = dict(description=description)

    def describe(self, key):
        return self.__dataclass_fields__[key].metadata.get("description", None)

    def type_args(self, key):
        return self.__dataclass_fields__[key].type.__args__

    cls.rich_table = schema_rich_table
    cls.__schema__ = dict(short_descr=short_descr, long_descr=long_descr)
    cls.describe = classmethod(describe)
    cls.type_args = classmethod(type_args)

    return cls
