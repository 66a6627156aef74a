"""Metadata transformation engine.

MetadataTransformer applies a RuleSet to one source metadata element and
returns the index fields for it. Every configured field is processed in
configuration order; each of its rule variants in turn:

1. Constant rules emit their constant and stop.
2. The rule's scope is expanded (current element, children, ancestors).
3. Every xpath is evaluated against every element in scope. Grouped rules
   build a GroupedRecord per match and contribute its main value; regular
   rules contribute the matched text.
4. Each value runs through the value pipeline and is written together with
   its derived fields (geocoordinates, dates, sort and untokenized copies).

After all rules, centuries are gap-filled and BOOL_WKT_COORDS is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from aws_lambda_powertools import Logger
from lxml import etree

try:
    from nodes.metadata_transform import geo
    from nodes.metadata_transform.aggregates import RecordAccumulator, build_sort_field
    from nodes.metadata_transform.authority.resolver import AuthorityResolver
    from nodes.metadata_transform.citation import CitationFetcher
    from nodes.metadata_transform.dates import (
        complete_centuries,
        complete_years,
        parse_dates_and_centuries,
    )
    from nodes.metadata_transform.grouping import (
        DEFAULT_MAX_DEPTH,
        GroupArena,
        GroupBuilder,
        promote_to_docstruct,
    )
    from nodes.metadata_transform.models import (
        ACCESS_RESTRICTED_MARKER,
        BOOL_WKT_COORDS,
        CURRENTNOSORT,
        PREFIX_SORT,
        PREFIX_SORTNUM,
        SUFFIX_UNTOKENIZED,
        WKT_COORDS,
        YEAR,
        OutputField,
    )
    from nodes.metadata_transform.rules import FieldRule, RuleSet
    from nodes.metadata_transform.value_pipeline import apply_pipeline, to_one_token
    from nodes.metadata_transform.xpath_scope import (
        ElementContext,
        ScopeResolver,
        XPathEvaluator,
        build_query,
        object_to_string,
    )
except ImportError:
    import geo
    from aggregates import RecordAccumulator, build_sort_field
    from authority.resolver import AuthorityResolver
    from citation import CitationFetcher
    from dates import complete_centuries, complete_years, parse_dates_and_centuries
    from grouping import DEFAULT_MAX_DEPTH, GroupArena, GroupBuilder, promote_to_docstruct
    from models import (
        ACCESS_RESTRICTED_MARKER,
        BOOL_WKT_COORDS,
        CURRENTNOSORT,
        PREFIX_SORT,
        PREFIX_SORTNUM,
        SUFFIX_UNTOKENIZED,
        WKT_COORDS,
        YEAR,
        OutputField,
    )
    from rules import FieldRule, RuleSet
    from value_pipeline import apply_pipeline, to_one_token
    from xpath_scope import (
        ElementContext,
        ScopeResolver,
        XPathEvaluator,
        build_query,
        object_to_string,
    )

logger = Logger()


@dataclass
class TransformResult:
    """Index fields produced for one metadata element.

    Attributes:
        fields: Output fields in emission order
        default_value: Aggregated free text for the DEFAULT search field
        groups: Grouped metadata records attached to the element
    """

    fields: list[OutputField]
    default_value: str
    groups: GroupArena

    def values(self, name: str) -> list[str]:
        return [field.value for field in self.fields if field.name == name]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "fields": [field.to_dict() for field in self.fields],
            "default_value": self.default_value,
            "grouped_metadata": self.groups.to_dicts(),
        }


class MetadataTransformer:
    """Applies field rules to source metadata elements.

    Args:
        rule_set: Field rules in configuration order
        evaluator: XPath evaluator (defaults to one bound to the rule set's
            namespaces)
        resolver: Authority resolver; None disables authority data
        scope_resolver: Scope expansion strategy
        citation_fetcher: Fetcher for citation groups
        max_group_depth: Deepest nesting level of grouped records
    """

    def __init__(
        self,
        rule_set: RuleSet,
        evaluator: XPathEvaluator | None = None,
        resolver: AuthorityResolver | None = None,
        scope_resolver: ScopeResolver | None = None,
        citation_fetcher: CitationFetcher | None = None,
        max_group_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.rule_set = rule_set
        self.evaluator = evaluator or XPathEvaluator(rule_set.namespaces)
        self.scope_resolver = scope_resolver or ScopeResolver()
        self.group_builder = GroupBuilder(
            self.evaluator,
            resolver=resolver,
            citation_fetcher=citation_fetcher,
            max_depth=max_group_depth,
        )

    def transform(
        self,
        element: etree._Element | None,
        context: ElementContext | None = None,
        query_prefix: str = "",
        default_value: str = "",
    ) -> TransformResult:
        """Produce the index fields for one metadata element.

        Args:
            element: Metadata element the xpaths are evaluated against; may
                be None if only constant rules apply
            context: Structure node and metadata source for scope expansion
            query_prefix: Prefix prepended to every rule xpath
            default_value: Initial content of the default aggregate

        Returns:
            TransformResult with fields, default text and grouped records
        """
        accumulator = RecordAccumulator(default_value)
        groups = GroupArena()

        for _, rules in self.rule_set:
            for rule in rules:
                self._apply_rule(rule, element, context, query_prefix, accumulator, groups)

        accumulator.extend(complete_centuries(accumulator))
        if not accumulator.has_field(BOOL_WKT_COORDS):
            accumulator.add(BOOL_WKT_COORDS, str(accumulator.has_field(WKT_COORDS)).lower())

        logger.debug(
            "Metadata element transformed",
            extra={"field_count": len(accumulator), "group_count": len(groups)},
        )
        return TransformResult(
            fields=accumulator.fields,
            default_value=accumulator.default.text,
            groups=groups,
        )

    def _apply_rule(
        self,
        rule: FieldRule,
        element: etree._Element | None,
        context: ElementContext | None,
        query_prefix: str,
        accumulator: RecordAccumulator,
        groups: GroupArena,
    ) -> None:
        if rule.constant_value is not None:
            value = (rule.constant_value + rule.value_postfix).strip()
            if rule.one_token:
                value = to_one_token(value, rule.splitting_character)
            accumulator.add(rule.field_name, value, rule.allow_duplicate_values)
            if rule.add_to_default:
                accumulator.default.add(rule.constant_value)
            return

        elements = self.scope_resolver.expand(rule, element, context)
        raw_values = self._collect_values(rule, elements, query_prefix, accumulator, groups)

        for raw in raw_values:
            written = self._write_value(rule, raw, accumulator)
            if written and rule.breaks_after_first:
                break

        if rule.interpolate_years:
            accumulator.extend(complete_years(accumulator, YEAR))
            if rule.normalize_year_field:
                accumulator.extend(complete_years(accumulator, rule.normalize_year_field))

    def _collect_values(
        self,
        rule: FieldRule,
        elements: list[etree._Element],
        query_prefix: str,
        accumulator: RecordAccumulator,
        groups: GroupArena,
    ) -> list[str]:
        values: list[str] = []
        for xpath_config in rule.xpaths:
            if not xpath_config.xpath:
                logger.error(f"An XPath expression for {rule.field_name} is empty")
                continue
            query = build_query(xpath_config.xpath, query_prefix, rule.is_grouped)

            for current in elements:
                for item in self.evaluator.evaluate(query, current):
                    restricted = isinstance(item, etree._Element) and item.get("shareable") == "no"
                    if restricted:
                        logger.info(f"Found non-shareable metadata value for {rule.field_name}")

                    if rule.is_grouped:
                        value = self._build_group(rule, item, restricted, accumulator, groups)
                        if value is not None:
                            values.append(xpath_config.prefix + value + xpath_config.suffix
                                          if value != ACCESS_RESTRICTED_MARKER else value)
                        continue

                    text = object_to_string(item)
                    if text is None or not text.strip():
                        logger.debug(f"Empty value returned for XPath query '{query}'")
                        continue

                    value = (text.strip() + rule.value_postfix).strip()
                    splitting = rule.splitting_character
                    if splitting:
                        # Skip empty concatenated hierarchy names
                        if value == splitting:
                            continue
                        if value.endswith(splitting):
                            value = value[: -len(splitting)]
                    value = xpath_config.prefix + value + xpath_config.suffix

                    if restricted:
                        logger.info(
                            f"Skipping non-shareable value for field '{rule.field_name}'. "
                            "Configure it as grouped to add it to the index."
                        )
                        continue

                    if rule.one_field and values:
                        values[0] = values[0] + rule.one_field_separator + value if values[0] else value
                    else:
                        values.append(value)
        return values

    def _build_group(
        self,
        rule: FieldRule,
        item: Any,
        restricted: bool,
        accumulator: RecordAccumulator,
        groups: GroupArena,
    ) -> str | None:
        """Build the grouped record subtree for a match.

        Returns:
            The value the match contributes to the rule's own field: the
            group's main value, the access restriction marker, or None
        """
        if not isinstance(item, etree._Element):
            logger.warning(f"Grouped field {rule.field_name} needs an element-selecting xpath")
            return None

        subtree = self.group_builder.build(
            item, rule.group_entity, rule, rule.field_name, accumulator, restricted=restricted
        )
        root = subtree[0]

        if rule.allow_duplicate_values or not groups.contains_equal(root):
            groups.merge(subtree)
            for record in subtree:
                promote_to_docstruct(record, accumulator)

        if root.main_value is None:
            return None
        if restricted:
            return ACCESS_RESTRICTED_MARKER
        return root.main_value

    def _write_value(self, rule: FieldRule, raw: str, accumulator: RecordAccumulator) -> bool:
        """Write one value and its derived fields; False if it was dropped."""
        field_name = rule.field_name
        value = apply_pipeline(raw, rule)
        if not value or not value.strip():
            return False

        if field_name == CURRENTNOSORT:
            try:
                value = str(int(value))
            except ValueError:
                logger.error(f"{CURRENTNOSORT} cannot be written because it is not an integer value: {value}")
                return False

        if rule.geojson_source:
            coords = geo.convert(value, rule.geojson_source, rule.geojson_separator)
            if coords.geojson:
                value = coords.geojson
            if rule.geojson_add_search_field and coords.wkt:
                accumulator.add(WKT_COORDS, coords.wkt)

        restricted = value == ACCESS_RESTRICTED_MARKER
        if rule.add_to_default and not restricted:
            accumulator.default.add(value)

        if rule.normalize_year:
            date_fields = parse_dates_and_centuries(
                accumulator.centuries,
                value,
                rule.normalize_year_min_digits,
                rule.normalize_year_field,
            )
            for date_field in date_fields:
                accumulator.add_field(date_field)
                build_sort_field(
                    accumulator,
                    date_field.name,
                    date_field.value,
                    PREFIX_SORTNUM,
                    rule.non_sort_configurations,
                    rule.value_normalizers,
                )

        accumulator.add(field_name, value, rule.allow_duplicate_values)

        if rule.add_sort_field:
            build_sort_field(
                accumulator,
                field_name,
                value,
                PREFIX_SORT,
                rule.non_sort_configurations,
                rule.value_normalizers,
            )
        if rule.add_untokenized_version and not restricted:
            accumulator.add(field_name + SUFFIX_UNTOKENIZED, value, rule.allow_duplicate_values)
        return True
