"""
Field catalogs: the column schema of one time series.

A catalog is an ordered, immutable sequence of ``(name, unit)`` pairs built
once from the gateway's ``/api/live`` metadata. Its order is the column order
of every output row, so it must never change after a Dataset is created.

CHANGELOG:
- 2026-10-13: Initial creation

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class FieldDef:
    """One column of a series.

    Attributes:
        name: Field name as reported by the gateway (e.g. ``"P_AC"``).
        unit: Engineering unit (e.g. ``"W"``); may be empty.
    """

    name: str
    unit: str = ""


@dataclass(frozen=True, slots=True)
class FieldCatalog:
    """Ordered, unique-named collection of :class:`FieldDef`.

    Raises:
        ValueError: If two fields share a name.
    """

    fields: tuple[FieldDef, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for fld in self.fields:
            if fld.name in seen:
                raise ValueError(f"duplicate field name in catalog: {fld.name!r}")
            seen.add(fld.name)

    @classmethod
    def from_names_units(
        cls,
        names: Sequence[str],
        units: Sequence[str],
    ) -> FieldCatalog:
        """Build a catalog from the parallel name/unit lists of ``/api/live``.

        Raises:
            ValueError: If the lists differ in length or a name repeats.
        """
        if len(names) != len(units):
            raise ValueError(
                f"{len(names)} field names but {len(units)} field units"
            )
        return cls(tuple(FieldDef(name, unit) for name, unit in zip(names, units)))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(fld.name for fld in self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self) -> Iterator[FieldDef]:
        return iter(self.fields)
