"""Grouped (nested) metadata records.

A grouped rule turns each matched element (a person, a place, a subject ...)
into a GroupedRecord: a small document of its own carrying the subfield
values, a main value, an optional authority identifier and the authority
data resolved for it. Group entities may nest; nested records are stored in
a GroupArena and point at their parent by index.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Iterator

from lxml import etree

try:
    from nodes.metadata_transform import geo
    from nodes.metadata_transform.aggregates import (
        RecordAccumulator,
        TextAggregate,
        build_sort_field,
        sort_field_name,
    )
    from nodes.metadata_transform.authority.base import (
        DEFAULT_AUTHORITY_BASE_URL,
        PLACEHOLDER_AUTHORITY_URIS,
        parse_element_identifier,
    )
    from nodes.metadata_transform.authority.resolver import AuthorityResolver
    from nodes.metadata_transform.citation import CitationFetcher
    from nodes.metadata_transform.models import (
        ACCESS_RESTRICTED_MARKER,
        ACCESSCONDITION,
        BOOL_WKT_COORDS,
        DEFAULT,
        GROUPFIELD,
        LABEL,
        MD_DISPLAYFORM,
        MD_FIRSTNAME,
        MD_LASTNAME,
        MD_LOCATION,
        MD_VALUE,
        METADATATYPE,
        NORM_COORDS,
        NORM_IDENTIFIER,
        NORM_NAME,
        NORM_URI,
        NORMDATATERMS,
        PREFIX_SORT,
        STRUCTURAL_GROUP_FIELDS,
        SUFFIX_UNTOKENIZED,
        WKT_COORDS,
        OutputField,
    )
    from nodes.metadata_transform.rules import FieldRule, GroupEntity, GroupType, SubfieldConfig
    from nodes.metadata_transform.value_pipeline import apply_pipeline, clean_up_name
    from nodes.metadata_transform.xpath_scope import XPathEvaluator
except ImportError:
    import geo
    from aggregates import RecordAccumulator, TextAggregate, build_sort_field, sort_field_name
    from authority.base import (
        DEFAULT_AUTHORITY_BASE_URL,
        PLACEHOLDER_AUTHORITY_URIS,
        parse_element_identifier,
    )
    from authority.resolver import AuthorityResolver
    from citation import CitationFetcher
    from models import (
        ACCESS_RESTRICTED_MARKER,
        ACCESSCONDITION,
        BOOL_WKT_COORDS,
        DEFAULT,
        GROUPFIELD,
        LABEL,
        MD_DISPLAYFORM,
        MD_FIRSTNAME,
        MD_LASTNAME,
        MD_LOCATION,
        MD_VALUE,
        METADATATYPE,
        NORM_COORDS,
        NORM_IDENTIFIER,
        NORM_NAME,
        NORM_URI,
        NORMDATATERMS,
        PREFIX_SORT,
        STRUCTURAL_GROUP_FIELDS,
        SUFFIX_UNTOKENIZED,
        WKT_COORDS,
        OutputField,
    )
    from rules import FieldRule, GroupEntity, GroupType, SubfieldConfig
    from value_pipeline import apply_pipeline, clean_up_name
    from xpath_scope import XPathEvaluator

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 8
REFID_FIELD = "MD_REFID"
REFID_PLACEHOLDER = "{0}"


@dataclass(frozen=True)
class GroupedRecord:
    """One grouped metadata record.

    Attributes:
        index: Position in the owning GroupArena
        parent_index: Index of the parent record; None for top-level records
        depth: Nesting depth (0 for top-level records)
        label: Group label (owning field name, or child entity name)
        group_type: Entity kind
        fields: Group fields in emission order
        main_value: Primary display value; None if none was found
        authority_uri: Identifier the authority data was resolved from
        authority_fields: Fields resolved from the authority vocabulary
        add_authority_data_to_docstruct: Promote authority fields to the
            owning record
        add_coords_to_docstruct: Promote coordinate fields to the owning
            record
    """

    index: int
    parent_index: int | None
    depth: int
    label: str
    group_type: GroupType
    fields: tuple[OutputField, ...]
    main_value: str | None = None
    authority_uri: str | None = None
    authority_fields: tuple[OutputField, ...] = ()
    add_authority_data_to_docstruct: bool = False
    add_coords_to_docstruct: bool = False

    def same_content(self, other: GroupedRecord) -> bool:
        """Whether two records describe the same group (position ignored)."""
        return (
            self.label == other.label
            and self.main_value == other.main_value
            and self.fields == other.fields
        )

    def values(self, name: str) -> list[str]:
        return [field.value for field in self.fields if field.name == name]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization (children excluded)."""
        return {
            "label": self.label,
            "group_type": self.group_type.value,
            "main_value": self.main_value,
            "authority_uri": self.authority_uri,
            "fields": [field.to_dict() for field in self.fields],
            "authority_fields": [field.to_dict() for field in self.authority_fields],
        }


class GroupArena:
    """Flat store of GroupedRecords; nesting is expressed by parent index."""

    def __init__(self) -> None:
        self._records: list[GroupedRecord] = []

    def next_index(self) -> int:
        return len(self._records)

    def append(self, record: GroupedRecord) -> GroupedRecord:
        if record.index != len(self._records):
            raise ValueError(f"Record index {record.index} does not match arena position {len(self._records)}")
        self._records.append(record)
        return record

    def roots(self) -> list[GroupedRecord]:
        return [record for record in self._records if record.parent_index is None]

    def children(self, index: int) -> list[GroupedRecord]:
        return [record for record in self._records if record.parent_index == index]

    def contains_equal(self, record: GroupedRecord) -> bool:
        """Whether a top-level record with the same content already exists."""
        return any(existing.same_content(record) for existing in self.roots())

    def merge(self, other: GroupArena) -> None:
        """Append every record of another arena, re-indexing it."""
        offset = len(self._records)
        for record in other:
            parent = record.parent_index + offset if record.parent_index is not None else None
            self._records.append(
                dataclasses.replace(record, index=record.index + offset, parent_index=parent)
            )

    def to_dicts(self) -> list[dict[str, Any]]:
        """Render the top-level records with their children nested inside."""
        rendered: dict[int, dict[str, Any]] = {}
        roots: list[dict[str, Any]] = []
        for record in self._records:
            doc = {**record.to_dict(), "children": []}
            rendered[record.index] = doc
            if record.parent_index is None:
                roots.append(doc)
            else:
                rendered[record.parent_index]["children"].append(doc)
        return roots

    def __getitem__(self, index: int) -> GroupedRecord:
        return self._records[index]

    def __iter__(self) -> Iterator[GroupedRecord]:
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._records)


class GroupBuilder:
    """Builds GroupedRecord subtrees for matched elements.

    Args:
        evaluator: XPath evaluator for subfield and child expressions
        resolver: Authority resolver; None disables authority data
        citation_fetcher: Fetcher for citation groups; None disables
            citation harvesting
        max_depth: Deepest nesting level that is still built
    """

    def __init__(
        self,
        evaluator: XPathEvaluator,
        resolver: AuthorityResolver | None = None,
        citation_fetcher: CitationFetcher | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.evaluator = evaluator
        self.resolver = resolver
        self.citation_fetcher = citation_fetcher
        self.max_depth = max_depth

    @property
    def authority_enabled(self) -> bool:
        return self.resolver is not None

    def build(
        self,
        element: etree._Element,
        entity: GroupEntity,
        rule: FieldRule,
        label: str,
        accumulator: RecordAccumulator,
        restricted: bool = False,
    ) -> GroupArena:
        """Build the record for element and every nested child record.

        Args:
            element: Matched group element
            entity: Group configuration
            rule: Owning field rule (its value pipeline applies to all values)
            label: Label of the top-level record
            accumulator: Fields of the owning record; receives default text,
                untokenized authority names and WKT search coordinates
            restricted: Mark the top-level record as access restricted

        Returns:
            Arena holding the subtree; the top-level record has index 0
        """
        arena = GroupArena()
        queue: deque[tuple[etree._Element, GroupEntity, str, int | None, int]] = deque()
        queue.append((element, entity, label, None, 0))

        while queue:
            current, current_entity, current_label, parent_index, depth = queue.popleft()
            record = self._build_record(
                current,
                current_entity,
                rule,
                current_label,
                accumulator,
                index=arena.next_index(),
                parent_index=parent_index,
                depth=depth,
                restricted=restricted and parent_index is None,
            )
            arena.append(record)
            if parent_index is not None and not record.main_value:
                logger.warning(f"{MD_VALUE} not found on child group of field {rule.field_name}")

            for child_entity in current_entity.children:
                if depth + 1 > self.max_depth:
                    logger.warning(
                        f"Skipping group entity '{child_entity.name}' of {rule.field_name}: "
                        f"nesting deeper than {self.max_depth}"
                    )
                    continue
                for child_element in self.evaluator.evaluate_elements(child_entity.xpath, current):
                    queue.append((child_element, child_entity, child_entity.name, record.index, depth + 1))

        return arena

    def _collect_values(
        self,
        group: RecordAccumulator,
        collected: dict[str, list[str]],
        subfields: tuple[SubfieldConfig, ...],
        element: etree._Element,
        rule: FieldRule,
        replacements: dict[str, str] | None = None,
    ) -> str | None:
        """Evaluate subfields against element and add their values to group.

        With replacements, only xpaths containing one of the placeholders are
        evaluated (with the placeholders filled in).

        Returns:
            The authority identifier found in the NORM_URI subfield, if any
        """
        authority_uri = None
        for subfield in subfields:
            for configured_xpath in subfield.xpaths:
                xpath = configured_xpath
                if replacements:
                    for placeholder, replacement in replacements.items():
                        xpath = xpath.replace(placeholder, replacement)
                    if xpath == configured_xpath:
                        continue

                values = self.evaluator.evaluate_strings(xpath, element)
                if not values:
                    default = subfield.default_values.get(configured_xpath)
                    if default is None:
                        continue
                    values = [default]
                if not subfield.multivalued:
                    values = values[:1]

                for position, raw in enumerate(values):
                    value = apply_pipeline(raw.strip(), rule)
                    if not value or not value.strip():
                        continue

                    name = subfield.field_name
                    if name.startswith(NORM_URI) and value.strip() in PLACEHOLDER_AUTHORITY_URIS:
                        logger.debug(f"Skipping placeholder authority URI in {name}")
                        continue
                    if self.authority_enabled and name.startswith(NORM_URI) and len(value) > 1:
                        if name == NORM_URI:
                            authority_uri = value
                        if not value.startswith("http"):
                            value = DEFAULT_AUTHORITY_BASE_URL + value

                    group.add(name, value, allow_duplicates=True)
                    if subfield.add_sort_field and not name.startswith(PREFIX_SORT) and position == 0:
                        group.add(sort_field_name(name), value, allow_duplicates=True)
                    collected.setdefault(name, []).append(value)

        return authority_uri

    def _build_record(
        self,
        element: etree._Element,
        entity: GroupEntity,
        rule: FieldRule,
        label: str,
        accumulator: RecordAccumulator,
        index: int,
        parent_index: int | None,
        depth: int,
        restricted: bool = False,
    ) -> GroupedRecord:
        group = RecordAccumulator()
        group.add(LABEL, label)
        group.add(METADATATYPE, entity.group_type.value)
        collected: dict[str, list[str]] = {}

        authority_uri = self._collect_values(group, collected, entity.subfields, element, rule)
        if not entity.has_subfield(MD_VALUE):
            logger.warning(f"'{MD_VALUE}' not configured for grouped metadata field '{label}'")

        # Main value: first matching field, cleaned of concatenation leftovers
        main_value = None
        replacements: dict[str, str] = {}
        for field in group.fields:
            if (
                field.name == MD_VALUE
                or (field.name == MD_DISPLAYFORM and entity.group_type == GroupType.PERSON)
                or (field.name == MD_LOCATION and entity.group_type == GroupType.LOCATION)
            ):
                if main_value is None:
                    main_value = clean_up_name(field.value)
                    group.replace_value(field.name, main_value)
            elif field.name == REFID_FIELD and element.getparent() is not None:
                replacements[REFID_PLACEHOLDER] = field.value

        if replacements:
            logger.debug(f"Collecting referenced source metadata for {rule.field_name}")
            uri = self._collect_values(
                group, collected, entity.subfields, element.getparent(), rule, replacements
            )
            authority_uri = authority_uri or uri

        if main_value is None and entity.group_type == GroupType.PERSON:
            parts = [
                collected[name][0]
                for name in (MD_LASTNAME, MD_FIRSTNAME)
                if collected.get(name)
            ]
            if parts:
                main_value = ", ".join(parts)
                group.add(MD_VALUE, main_value)

        if entity.group_type == GroupType.CITATION:
            authority_uri = self._harvest_citation(group, collected, entity, rule, label) or authority_uri

        # Single-valued field by which search hits are grouped
        if main_value:
            build_sort_field(group, GROUPFIELD, f"{label}_{main_value}", prefix="")

        if self.authority_enabled and authority_uri is None:
            identifier = parse_element_identifier(dict(element.attrib))
            if identifier is not None:
                authority_uri = identifier.to_uri()
                group.add(NORM_URI, authority_uri)

        authority_fields: list[OutputField] = []
        terms = TextAggregate()
        authority_identifier = None
        if self.authority_enabled and authority_uri:
            authority_fields = self.resolver.resolve(
                authority_uri,
                label_field=rule.field_name,
                replace_rules=rule.replace_rules,
                default_fields=rule.authority_default_fields,
                default_aggregate=accumulator.default,
                terms_aggregate=terms,
            )
            for field in authority_fields:
                if field.name == NORM_NAME and field.value.strip():
                    if rule.add_to_default:
                        accumulator.default.add(field.value)
                    if rule.add_untokenized_version:
                        accumulator.add(label + SUFFIX_UNTOKENIZED, field.value)
                elif field.name == NORM_IDENTIFIER and authority_identifier is None:
                    authority_identifier = field.value

        group_field_replaced = False
        if authority_identifier:
            group_field_replaced = group.replace_value(GROUPFIELD, f"{label}_{authority_identifier}")

        finished = RecordAccumulator()
        sorts = RecordAccumulator()
        for field in group.fields:
            value = field.value
            if rule.geojson_source and field.name == MD_VALUE:
                coords = geo.convert(value, rule.geojson_source, rule.geojson_separator)
                if coords.geojson:
                    value = coords.geojson
                if rule.geojson_add_search_field and coords.wkt:
                    accumulator.add(WKT_COORDS, coords.wkt)

            finished.add(field.name, value, allow_duplicates=True)

            if rule.add_to_default:
                if main_value and main_value.strip():
                    accumulator.default.add(main_value)
                if value and value != main_value and field.name not in STRUCTURAL_GROUP_FIELDS:
                    accumulator.default.add(value)

            if not field.name.startswith(PREFIX_SORT) and not group.has_field(sort_field_name(field.name)):
                build_sort_field(
                    sorts,
                    field.name,
                    value,
                    PREFIX_SORT,
                    rule.non_sort_configurations,
                    rule.value_normalizers,
                )
        finished.extend(sorts, allow_duplicates=True)

        if authority_identifier and not group_field_replaced:
            finished.add(GROUPFIELD, f"{label}_{authority_identifier}")
        if rule.add_to_default and main_value and main_value.strip():
            finished.add(DEFAULT, main_value)
        if terms:
            finished.add(NORMDATATERMS, terms.text)
        if restricted and main_value:
            finished.add(ACCESSCONDITION, ACCESS_RESTRICTED_MARKER)

        return GroupedRecord(
            index=index,
            parent_index=parent_index,
            depth=depth,
            label=label,
            group_type=entity.group_type,
            fields=tuple(finished),
            main_value=main_value,
            authority_uri=authority_uri,
            authority_fields=tuple(authority_fields),
            add_authority_data_to_docstruct=entity.add_authority_data_to_docstruct,
            add_coords_to_docstruct=entity.add_coords_to_docstruct,
        )

    def _harvest_citation(
        self,
        group: RecordAccumulator,
        collected: dict[str, list[str]],
        entity: GroupEntity,
        rule: FieldRule,
        label: str,
    ) -> str | None:
        if not entity.url:
            logger.warning(f"Citation metadata field {label} is missing a URL")
            return None
        if self.citation_fetcher is None:
            return None

        root = self.citation_fetcher.fetch(entity.url, collected)
        if root is None:
            return None
        return self._collect_values(group, collected, entity.subfields, root, rule)


def _is_coordinate_field(name: str) -> bool:
    return name.startswith(("WKT_", NORM_COORDS))


def promote_to_docstruct(record: GroupedRecord, accumulator: RecordAccumulator) -> None:
    """Copy a record's authority data to the owning record, as configured.

    Coordinate fields are promoted only with ``add_coords_to_docstruct``,
    all other authority fields only with ``add_authority_data_to_docstruct``.
    Single-valued sort fields are written once; BOOL_WKT_COORDS is left to
    the owning record, which derives it from its WKT_COORDS fields.
    """
    if not (record.add_authority_data_to_docstruct or record.add_coords_to_docstruct):
        return

    for field in record.authority_fields:
        if field.name == BOOL_WKT_COORDS:
            continue
        if _is_coordinate_field(field.name):
            if not record.add_coords_to_docstruct:
                continue
        elif not record.add_authority_data_to_docstruct:
            continue
        if field.name.startswith(PREFIX_SORT) and accumulator.has_field(field.name):
            continue
        accumulator.add(field.name, field.value)
