"""Field accumulation, sort keys and free-text aggregates.

RecordAccumulator collects the OutputFields produced for one metadata
element (or one grouped sub-record) and enforces the write-side rules:
empty values are dropped, an identical (name, value) pair is written only
once unless the caller allows duplicates, and at most one sort field per
base name is ever written.

TextAggregate is the running, space-delimited free-text buffer used for the
DEFAULT field and for the authority terms (NORMDATATERMS).
"""

from __future__ import annotations

from typing import Iterable, Iterator, Sequence

try:
    from nodes.metadata_transform.models import PREFIX_SORT, OutputField
    from nodes.metadata_transform.value_pipeline import (
        NonSortConfiguration,
        ValueNormalizer,
    )
except ImportError:
    from models import PREFIX_SORT, OutputField
    from value_pipeline import NonSortConfiguration, ValueNormalizer

# Values containing this placeholder are written as several values
SPLIT_PLACEHOLDER = "{SPLIT}"


class TextAggregate:
    """Space-delimited text buffer deduplicated by substring containment."""

    def __init__(self, initial: str = ""):
        self._buffer = initial or ""

    def add(self, value: str) -> bool:
        """Append `` value `` unless the buffer already contains it.

        Returns:
            True if the value was appended

        Raises:
            ValueError: If value is None
        """
        if value is None:
            raise ValueError("value may not be None")
        padded = f" {value.strip()} "
        if padded in self._buffer:
            return False
        self._buffer += padded
        return True

    @property
    def text(self) -> str:
        return self._buffer

    def __contains__(self, value: str) -> bool:
        return f" {value.strip()} " in self._buffer

    def __bool__(self) -> bool:
        return bool(self._buffer.strip())

    def __str__(self) -> str:
        return self._buffer


class RecordAccumulator:
    """Ordered OutputFields plus the running aggregates of one record.

    Owned by exactly one engine invocation; not thread-safe.
    """

    def __init__(self, default_value: str = ""):
        self._fields: list[OutputField] = []
        self._keys: set[tuple[str, str]] = set()
        self.default = TextAggregate(default_value)
        self.centuries: set[int] = set()

    def add(self, name: str, value: str, allow_duplicates: bool = False) -> bool:
        """Add a field value.

        Values containing ``{SPLIT}`` are split into separate values first.

        Args:
            name: Field name
            value: Field value; empty values are dropped
            allow_duplicates: Write the pair even if it is already present

        Returns:
            True if at least one field was written

        Raises:
            ValueError: If name or value is None
        """
        if name is None or value is None:
            raise ValueError(f"Field name and value may not be None: {name}={value}")

        parts = value.split(SPLIT_PLACEHOLDER) if SPLIT_PLACEHOLDER in value else [value]
        written = False
        for part in parts:
            if not part:
                continue
            key = (name, part)
            if key in self._keys and not allow_duplicates:
                continue
            self._keys.add(key)
            self._fields.append(OutputField(name, part))
            written = True
        return written

    def add_field(self, field: OutputField, allow_duplicates: bool = False) -> bool:
        return self.add(field.name, field.value, allow_duplicates)

    def extend(self, fields: Iterable[OutputField], allow_duplicates: bool = False) -> None:
        for field in fields:
            self.add(field.name, field.value, allow_duplicates)

    def replace_value(self, name: str, value: str) -> bool:
        """Replace the value of the first field with the given name.

        Returns:
            True if a field was replaced
        """
        for position, field in enumerate(self._fields):
            if field.name == name:
                self._keys.discard((field.name, field.value))
                self._keys.add((name, value))
                self._fields[position] = OutputField(name, value)
                return True
        return False

    def has_field(self, name: str) -> bool:
        return any(field.name == name for field in self._fields)

    def first_value(self, name: str) -> str | None:
        for field in self._fields:
            if field.name == name:
                return field.value
        return None

    def values(self, name: str) -> list[str]:
        return [field.value for field in self._fields if field.name == name]

    @property
    def fields(self) -> list[OutputField]:
        return list(self._fields)

    def __iter__(self) -> Iterator[OutputField]:
        return iter(list(self._fields))

    def __len__(self) -> int:
        return len(self._fields)


def sort_field_name(field_name: str, prefix: str = PREFIX_SORT) -> str:
    """Return the sort field name for a field (``MD_TITLE`` -> ``SORT_TITLE``)."""
    return prefix + field_name.replace("MD_", "")


def build_sort_field(
    target: RecordAccumulator,
    field_name: str,
    value: str,
    prefix: str = PREFIX_SORT,
    non_sort_configurations: Sequence[NonSortConfiguration] = (),
    value_normalizers: Sequence[ValueNormalizer] = (),
) -> OutputField | None:
    """Write the sort field for a value unless one already exists.

    Non-sort spans are stripped and normalizers applied before writing.

    Returns:
        The written field, or None if a sort field of that name already
        existed (first writer wins) or the value ended up empty

    Raises:
        ValueError: If field_name, value or prefix is None
    """
    if field_name is None:
        raise ValueError("field_name may not be None")
    if value is None:
        raise ValueError("value may not be None")
    if prefix is None:
        raise ValueError("prefix may not be None")

    name = sort_field_name(field_name, prefix)
    if target.has_field(name):
        return None

    sort_value = value
    for non_sort in non_sort_configurations:
        sort_value = non_sort.apply(sort_value)
    for normalizer in value_normalizers:
        sort_value = normalizer.normalize(sort_value)

    if not target.add(name, sort_value):
        return None
    return OutputField(name, sort_value)
