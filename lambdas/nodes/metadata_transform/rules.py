"""Rule configuration model.

Rules are loaded from JSON (inline in the node configuration or from S3) of
the form::

    {
        "namespaces": {"mods": "http://www.loc.gov/mods/v3"},
        "fields": {
            "MD_TITLE": [
                {
                    "xpaths": ["mods:titleInfo/mods:title"],
                    "add_sort_field": true,
                    "non_sort_configurations": [{"prefix": "<<", "suffix": ">>"}]
                }
            ],
            "MD_AUTHOR": [
                {
                    "xpaths": [{"xpath": "mods:name[@type='personal']", "prefix": ""}],
                    "group_entity": {
                        "type": "PERSON",
                        "subfields": {
                            "MD_VALUE": {"xpaths": ["mods:displayForm"]},
                            "NORM_URI": {"xpaths": ["@valueURI"], "multivalued": false}
                        }
                    }
                }
            ]
        }
    }

Every field name maps to an ordered list of rule variants; all variants are
evaluated, in order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

try:
    from nodes.metadata_transform import geo
    from nodes.metadata_transform.value_pipeline import (
        NonSortConfiguration,
        ReplaceRule,
        ValueNormalizer,
        replace_rule_from_dict,
    )
except ImportError:
    import geo
    from value_pipeline import (
        NonSortConfiguration,
        ReplaceRule,
        ValueNormalizer,
        replace_rule_from_dict,
    )

logger = logging.getLogger(__name__)

NODE_SCOPES = frozenset({"first", "all"})
CHILD_SCOPES = frozenset({"none", "all"})
PARENT_SCOPES = frozenset({"none", "first", "all"})


class GroupType(Enum):
    """Kind of entity a grouped metadata record describes."""

    PERSON = "PERSON"
    CORPORATION = "CORPORATION"
    LOCATION = "LOCATION"
    SUBJECT = "SUBJECT"
    PUBLISHER = "PUBLISHER"
    EVENT = "EVENT"
    CITATION = "CITATION"
    RECORD = "RECORD"
    SHELFMARK = "SHELFMARK"
    OTHER = "OTHER"

    @classmethod
    def from_name(cls, name: str | None) -> GroupType:
        if not name:
            return cls.OTHER
        try:
            return cls[name.strip().upper()]
        except KeyError:
            logger.warning(f"Unknown group type '{name}', using OTHER")
            return cls.OTHER


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


@dataclass(frozen=True)
class XPathConfig:
    """An XPath expression with an optional value prefix and suffix."""

    xpath: str
    prefix: str = ""
    suffix: str = ""

    @classmethod
    def from_dict(cls, config: dict[str, Any] | str) -> XPathConfig:
        if isinstance(config, str):
            return cls(xpath=config)
        return cls(
            xpath=str(config.get("xpath") or ""),
            prefix=str(config.get("prefix") or ""),
            suffix=str(config.get("suffix") or ""),
        )


@dataclass(frozen=True)
class SubfieldConfig:
    """One field of a grouped metadata record.

    Attributes:
        field_name: Output field name within the group
        xpaths: Expressions evaluated against the group element, in order
        default_values: Per-xpath value used when the xpath finds nothing
        multivalued: Keep every value found (otherwise only the first)
        add_sort_field: Also write the first value under the sort name
    """

    field_name: str
    xpaths: tuple[str, ...] = ()
    default_values: dict[str, str] = field(default_factory=dict)
    multivalued: bool = True
    add_sort_field: bool = False

    @classmethod
    def from_dict(cls, field_name: str, config: dict[str, Any] | str | list) -> SubfieldConfig:
        """Create a subfield from configuration.

        A bare string or list is shorthand for the xpath(s).
        """
        if isinstance(config, str):
            return cls(field_name=field_name, xpaths=(config,))
        if isinstance(config, list):
            return cls(field_name=field_name, xpaths=tuple(str(x) for x in config))

        xpaths: list[str] = []
        default_values: dict[str, str] = {}
        for entry in config.get("xpaths", []):
            if isinstance(entry, dict):
                xpath = str(entry.get("xpath") or "")
                if entry.get("default_value") is not None:
                    default_values[xpath] = str(entry["default_value"])
            else:
                xpath = str(entry)
            if xpath:
                xpaths.append(xpath)

        return cls(
            field_name=field_name,
            xpaths=tuple(xpaths),
            default_values=default_values,
            multivalued=_as_bool(config.get("multivalued"), True),
            add_sort_field=_as_bool(config.get("add_sort_field")),
        )


@dataclass(frozen=True)
class GroupEntity:
    """Configuration of a grouped (nested) metadata entity.

    Attributes:
        name: Label of nested child groups (the top-level group is labeled
            with the owning field name)
        group_type: Entity kind
        xpath: Expression selecting nested child elements relative to the
            parent group element
        url: Citation source URL template with ``{FIELD}`` placeholders
        subfields: Ordered subfield configurations
        children: Nested child entities
        add_authority_data_to_docstruct: Copy authority fields to the owning
            record
        add_coords_to_docstruct: Copy coordinate fields to the owning record
    """

    name: str = ""
    group_type: GroupType = GroupType.OTHER
    xpath: str | None = None
    url: str | None = None
    subfields: tuple[SubfieldConfig, ...] = ()
    children: tuple[GroupEntity, ...] = ()
    add_authority_data_to_docstruct: bool = False
    add_coords_to_docstruct: bool = False

    def has_subfield(self, field_name: str) -> bool:
        return any(subfield.field_name == field_name for subfield in self.subfields)

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> GroupEntity:
        """Create a group entity (and its children) from configuration.

        Raises:
            ValueError: If a nested child entity has no xpath
        """
        subfields = tuple(
            SubfieldConfig.from_dict(name, subfield)
            for name, subfield in (config.get("subfields") or {}).items()
            if subfield is not None
        )

        children = []
        for child in config.get("children") or []:
            if not child.get("xpath"):
                raise ValueError(f"Child group entity '{child.get('name')}' needs an xpath")
            children.append(cls.from_dict(child))

        return cls(
            name=str(config.get("name") or ""),
            group_type=GroupType.from_name(config.get("type")),
            xpath=config.get("xpath") or None,
            url=config.get("url") or None,
            subfields=subfields,
            children=tuple(children),
            add_authority_data_to_docstruct=_as_bool(config.get("add_authority_data_to_docstruct")),
            add_coords_to_docstruct=_as_bool(config.get("add_coords_to_docstruct")),
        )


@dataclass(frozen=True)
class FieldRule:
    """One configured way of producing values for an index field."""

    field_name: str
    xpaths: tuple[XPathConfig, ...] = ()
    node: str = "all"
    child: str = "none"
    parents: str = "none"
    constant_value: str | None = None
    value_postfix: str = ""
    one_token: bool = False
    splitting_character: str | None = None
    one_field: bool = False
    one_field_separator: str = " "
    lowercase: bool = False
    add_sort_field: bool = False
    allow_duplicate_values: bool = False
    add_to_default: bool = False
    add_untokenized_version: bool = True
    normalize_year: bool = False
    normalize_year_min_digits: int = 3
    normalize_year_field: str | None = None
    interpolate_years: bool = False
    geojson_source: str | None = None
    geojson_separator: str = " "
    geojson_add_search_field: bool = False
    authority_default_fields: tuple[str, ...] = ()
    replace_rules: tuple[ReplaceRule, ...] = ()
    value_normalizers: tuple[ValueNormalizer, ...] = ()
    non_sort_configurations: tuple[NonSortConfiguration, ...] = ()
    group_entity: GroupEntity | None = None

    @property
    def is_grouped(self) -> bool:
        return self.group_entity is not None

    @property
    def breaks_after_first(self) -> bool:
        return self.node == "first"

    @classmethod
    def from_dict(cls, field_name: str, config: dict[str, Any]) -> FieldRule:
        """Create a field rule from configuration.

        Raises:
            ValueError: If the rule is malformed
        """
        if not field_name:
            raise ValueError("Field name is required")
        if not isinstance(config, dict):
            raise ValueError(f"Rule for {field_name} must be an object, got {type(config).__name__}")

        xpaths = tuple(XPathConfig.from_dict(x) for x in config.get("xpaths") or [])
        constant_value = config.get("constant_value")
        if constant_value is None and not xpaths:
            raise ValueError(f"Rule for {field_name} needs xpaths or a constant_value")

        node = str(config.get("node", "all")).lower()
        child = str(config.get("child", "none")).lower()
        parents = str(config.get("parents", "none")).lower()
        if node not in NODE_SCOPES:
            raise ValueError(f"Invalid node scope for {field_name}: {node}")
        if child not in CHILD_SCOPES:
            raise ValueError(f"Invalid child scope for {field_name}: {child}")
        if parents not in PARENT_SCOPES:
            raise ValueError(f"Invalid parents scope for {field_name}: {parents}")

        min_digits = int(config.get("normalize_year_min_digits", 3))
        if min_digits < 1:
            raise ValueError(f"normalize_year_min_digits must be at least 1 for {field_name}")

        geojson_source = config.get("geojson_source") or None
        if geojson_source and geojson_source.lower() not in geo.SUPPORTED_TYPES:
            raise ValueError(f"Unsupported geojson_source for {field_name}: {geojson_source}")

        group_config = config.get("group_entity")

        return cls(
            field_name=field_name,
            xpaths=xpaths,
            node=node,
            child=child,
            parents=parents,
            constant_value=str(constant_value) if constant_value is not None else None,
            value_postfix=str(config.get("value_postfix") or ""),
            one_token=_as_bool(config.get("one_token")),
            splitting_character=config.get("splitting_character") or None,
            one_field=_as_bool(config.get("one_field")),
            one_field_separator=str(config.get("one_field_separator", " ")),
            lowercase=_as_bool(config.get("lowercase")),
            add_sort_field=_as_bool(config.get("add_sort_field")),
            allow_duplicate_values=_as_bool(config.get("allow_duplicate_values")),
            add_to_default=_as_bool(config.get("add_to_default")),
            add_untokenized_version=_as_bool(config.get("add_untokenized_version"), True),
            normalize_year=_as_bool(config.get("normalize_year")),
            normalize_year_min_digits=min_digits,
            normalize_year_field=config.get("normalize_year_field") or None,
            interpolate_years=_as_bool(config.get("interpolate_years")),
            geojson_source=geojson_source,
            geojson_separator=str(config.get("geojson_separator") or " "),
            geojson_add_search_field=_as_bool(config.get("geojson_add_search_field")),
            authority_default_fields=tuple(config.get("authority_default_fields") or ()),
            replace_rules=tuple(
                replace_rule_from_dict(rule) for rule in config.get("replace_rules") or []
            ),
            value_normalizers=tuple(
                ValueNormalizer.from_dict(n) for n in config.get("value_normalizers") or []
            ),
            non_sort_configurations=tuple(
                NonSortConfiguration(prefix=n.get("prefix") or None, suffix=n.get("suffix") or None)
                for n in config.get("non_sort_configurations") or []
            ),
            group_entity=GroupEntity.from_dict(group_config) if group_config else None,
        )


@dataclass(frozen=True)
class RuleSet:
    """Ordered mapping of field names to their rule variants."""

    fields: tuple[tuple[str, tuple[FieldRule, ...]], ...] = ()
    namespaces: dict[str, str] = field(default_factory=dict)

    def __iter__(self) -> Iterator[tuple[str, tuple[FieldRule, ...]]]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    @property
    def field_names(self) -> list[str]:
        return [name for name, _ in self.fields]

    def rules_for(self, field_name: str) -> tuple[FieldRule, ...]:
        for name, rules in self.fields:
            if name == field_name:
                return rules
        return ()

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> RuleSet:
        """Build a rule set, skipping (and logging) malformed rules.

        Raises:
            ValueError: If the configuration has no ``fields`` mapping
        """
        if not isinstance(config, dict) or not isinstance(config.get("fields"), dict):
            raise ValueError("Rules configuration must contain a 'fields' mapping")

        fields: list[tuple[str, tuple[FieldRule, ...]]] = []
        for field_name, variants in config["fields"].items():
            if isinstance(variants, dict):
                variants = [variants]
            rules: list[FieldRule] = []
            for variant in variants or []:
                try:
                    rules.append(FieldRule.from_dict(field_name, variant))
                except (ValueError, TypeError, AttributeError) as e:
                    logger.error(f"Skipping invalid rule for {field_name}: {e}")
            if rules:
                fields.append((field_name, tuple(rules)))

        namespaces = {str(k): str(v) for k, v in (config.get("namespaces") or {}).items()}
        return cls(fields=tuple(fields), namespaces=namespaces)
