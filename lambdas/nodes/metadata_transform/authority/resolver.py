"""Authority vocabulary resolution.

AuthorityResolver turns an authority identifier into index fields: it
resolves the identifier to a URI, serves the record from the cache while it
is fresh, otherwise fetches it through the configured AuthorityLookup, and
converts the record's ``NORM_*`` entries into OutputFields.
"""

from __future__ import annotations

import time
import unicodedata
from typing import Callable, Sequence

from aws_lambda_powertools import Logger

try:
    from nodes.metadata_transform.aggregates import TextAggregate
    from nodes.metadata_transform.authority.base import (
        DEFAULT_AUTHORITY_BASE_URL,
        AuthorityLookup,
        AuthorityRecord,
    )
    from nodes.metadata_transform.authority.cache import AuthorityCache
    from nodes.metadata_transform import geo
    from nodes.metadata_transform.models import (
        BOOL_WKT_COORDS,
        MIDFIX_LANG,
        NORM_COORDS,
        NORM_COORDS_GEOJSON,
        NORM_DATE,
        NORM_LIFEPERIOD,
        NORM_NAME,
        NORM_PLACE,
        NORM_PREFIX,
        NORM_STATICPAGE,
        NORM_URI,
        SUFFIX_UNTOKENIZED,
        WKT_COORDS,
        OutputField,
    )
    from nodes.metadata_transform.value_pipeline import ReplaceRule, apply_replace_rules
except ImportError:
    import geo
    from aggregates import TextAggregate
    from authority.base import DEFAULT_AUTHORITY_BASE_URL, AuthorityLookup, AuthorityRecord
    from authority.cache import AuthorityCache
    from models import (
        BOOL_WKT_COORDS,
        MIDFIX_LANG,
        NORM_COORDS,
        NORM_COORDS_GEOJSON,
        NORM_DATE,
        NORM_LIFEPERIOD,
        NORM_NAME,
        NORM_PLACE,
        NORM_PREFIX,
        NORM_STATICPAGE,
        NORM_URI,
        SUFFIX_UNTOKENIZED,
        WKT_COORDS,
        OutputField,
    )
    from value_pipeline import ReplaceRule, apply_replace_rules

logger = Logger()

NAME_VARIANT_PREFIXES = ("NORM_ALTNAME", "NORM_OFFICIALNAME")


def extract_language_code(field_name: str) -> str | None:
    """Return the lowercase language code of a ``<NAME>_LANG_XX`` field.

    Only a two-character suffix counts as a language code.

    Raises:
        ValueError: If field_name is None

    Examples:
        >>> extract_language_code("MD_TITLE_LANG_DE")
        'de'
        >>> extract_language_code("MD_TITLE_LANG_DEU") is None
        True
    """
    if field_name is None:
        raise ValueError("field_name may not be None")
    position = field_name.find(MIDFIX_LANG)
    if position < 0:
        return None
    code = field_name[position + len(MIDFIX_LANG) :]
    return code.lower() if len(code) == 2 else None


def parse_authority_metadata(
    entries: Sequence[tuple[str, str]],
    label_field: str | None = None,
    replace_rules: Sequence[ReplaceRule] = (),
    default_fields: Sequence[str] = (),
    default_aggregate: TextAggregate | None = None,
    terms_aggregate: TextAggregate | None = None,
) -> list[OutputField]:
    """Convert authority record entries into index fields.

    Args:
        entries: Ordered (key, text) pairs of an authority record
        label_field: Field name of the group the record belongs to; its
            ``_LANG_XX`` suffix selects the preferred language
        replace_rules: Replace rules applied to every value
        default_fields: Keys whose values go into the default aggregate
        default_aggregate: Record default text (updated in place)
        terms_aggregate: Authority search terms (updated in place)

    Returns:
        Fields in emission order, closed by BOOL_WKT_COORDS
    """
    if not entries:
        return []

    language = extract_language_code(label_field) if label_field else None

    result: list[OutputField] = []
    # Plain entries are collected first so preferred-language values can
    # replace them afterwards
    collected: list[OutputField] = []
    preferred: dict[str, list[str]] = {}
    name_values: set[str] = set()
    place_values: set[str] = set()
    has_wkt_coords = False

    for key, text in entries:
        if not key.startswith(NORM_PREFIX):
            continue
        if not text or not text.strip() or key == NORM_STATICPAGE:
            continue

        value = unicodedata.normalize("NFC", text)
        value = apply_replace_rules(value, replace_rules)

        if default_aggregate is not None and key in default_fields:
            default_aggregate.add(value)

        if terms_aggregate is not None and not key.startswith(NORM_URI):
            terms_aggregate.add(value)

        field_language = extract_language_code(key)
        if field_language and field_language != language:
            continue
        if field_language:
            preferred.setdefault(key, []).append(value)
            logger.debug("Found preferred language value", extra={"field": key, "value": value})

        collected.append(OutputField(key, value))

        if key == NORM_NAME or (key.startswith(NAME_VARIANT_PREFIXES) and value not in name_values):
            if label_field:
                collected.append(OutputField(f"{label_field}_NAME_SEARCH", value))
            collected.append(OutputField(NORM_NAME + SUFFIX_UNTOKENIZED, value))
            name_values.add(value)
        elif key.startswith(NORM_PLACE) and value not in place_values:
            if label_field:
                collected.append(OutputField(f"{label_field}_PLACE_SEARCH", value))
            collected.append(OutputField(NORM_PLACE + SUFFIX_UNTOKENIZED, value))
            place_values.add(value)
        elif key == NORM_LIFEPERIOD:
            for date in value.split("-"):
                if label_field:
                    result.append(OutputField(f"{label_field}_DATE_SEARCH", date.strip()))
                result.append(OutputField(NORM_DATE + SUFFIX_UNTOKENIZED, date.strip()))
        elif key == NORM_COORDS:
            coords = geo.convert(value, geo.get_coordinates_type(value), " ")
            if coords.wkt:
                result.append(OutputField(WKT_COORDS, coords.wkt))
                has_wkt_coords = True
            if coords.geojson:
                result.append(OutputField(NORM_COORDS_GEOJSON, coords.geojson))

    overridden: set[str] = set()
    for field in collected:
        if field.name in overridden:
            continue
        if language and not extract_language_code(field.name):
            language_field = f"{field.name}{MIDFIX_LANG}{language.upper()}"
            values = preferred.get(language_field)
            if values:
                logger.debug(f"Overriding values of {field.name} with values from {language_field}")
                for value in values:
                    result.append(OutputField(field.name, value))
                    result.append(OutputField(field.name + SUFFIX_UNTOKENIZED, value))
                overridden.add(field.name)
                continue
        result.append(field)
        result.append(OutputField(field.name + SUFFIX_UNTOKENIZED, field.value))

    result.append(OutputField(BOOL_WKT_COORDS, str(has_wkt_coords).lower()))
    return result


class AuthorityResolver:
    """Resolve authority identifiers to index fields through a shared cache.

    Args:
        lookup: Source of authority records
        cache: Shared record cache; None disables caching
        default_base_url: Prefix for schemeless identifiers
        clock: Time source for record creation timestamps
    """

    def __init__(
        self,
        lookup: AuthorityLookup,
        cache: AuthorityCache | None = None,
        default_base_url: str = DEFAULT_AUTHORITY_BASE_URL,
        clock: Callable[[], float] = time.time,
    ):
        self.lookup = lookup
        self.cache = cache
        self.default_base_url = default_base_url
        self.clock = clock

    def resolve_uri(self, uri: str) -> str:
        """Qualify a schemeless identifier with the default vocabulary base."""
        uri = uri.strip()
        if not uri.startswith("http"):
            uri = self.default_base_url + uri
        return uri

    def fetch_record(self, uri: str) -> AuthorityRecord | None:
        """Return the record for a resolved URI, from cache or lookup.

        Empty or failed lookups are never cached.
        """
        if self.cache is not None:
            record = self.cache.get(uri)
            if record is not None:
                return record

        result = self.lookup.lookup(uri)
        if not result.success:
            logger.warning(
                "Authority dataset could not be retrieved",
                extra={"uri": uri, "error": result.error_message},
            )
            return None
        if not result.entries:
            logger.warning("No authority data fields found", extra={"uri": uri})
            return None

        record = AuthorityRecord(uri=uri, entries=tuple(result.entries), created_at=self.clock())
        if self.cache is not None:
            self.cache.put(uri, record)
        return record

    def resolve(
        self,
        uri: str,
        label_field: str | None = None,
        replace_rules: Sequence[ReplaceRule] = (),
        default_fields: Sequence[str] = (),
        default_aggregate: TextAggregate | None = None,
        terms_aggregate: TextAggregate | None = None,
    ) -> list[OutputField]:
        """Fetch the authority record behind an identifier and parse it.

        Args:
            uri: Authority URI or bare identifier
            label_field: See parse_authority_metadata
            replace_rules: See parse_authority_metadata
            default_fields: See parse_authority_metadata
            default_aggregate: See parse_authority_metadata
            terms_aggregate: See parse_authority_metadata

        Returns:
            Authority fields; empty if the record is unavailable

        Raises:
            ValueError: If uri is None
        """
        if uri is None:
            raise ValueError("uri may not be None")

        resolved = self.resolve_uri(uri)
        logger.info("Resolving authority data", extra={"uri": resolved})
        record = self.fetch_record(resolved)
        if record is None:
            return []

        return parse_authority_metadata(
            record.entries,
            label_field=label_field,
            replace_rules=replace_rules,
            default_fields=default_fields,
            default_aggregate=default_aggregate,
            terms_aggregate=terms_aggregate,
        )
