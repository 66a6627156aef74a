"""Authority vocabulary lookups, caching and resolution.

Use the `create_lookup()` factory function to instantiate the lookup
implementation named by the lookup_type configuration.

Supported lookup types:
- rest: HTTP lookup returning JSON or XML records

Example:
    >>> from nodes.metadata_transform.authority import (
    ...     AuthorityResolver,
    ...     InMemoryAuthorityCache,
    ...     create_lookup,
    ... )
    >>> lookup = create_lookup("rest", timeout=5)
    >>> resolver = AuthorityResolver(lookup, InMemoryAuthorityCache(ttl_hours=24))
    >>> fields = resolver.resolve("118540238", label_field="MD_AUTHOR")
"""

from typing import Any, Final

try:
    from nodes.metadata_transform.authority.base import (
        DEFAULT_AUTHORITY_BASE_URL,
        AuthorityIdentifier,
        AuthorityLookup,
        AuthorityRecord,
        BareIdentifier,
        LookupResult,
        SchemeUri,
        parse_element_identifier,
        parse_identifier,
    )
    from nodes.metadata_transform.authority.cache import (
        AuthorityCache,
        InMemoryAuthorityCache,
    )
    from nodes.metadata_transform.authority.resolver import (
        AuthorityResolver,
        extract_language_code,
        parse_authority_metadata,
    )
    from nodes.metadata_transform.authority.rest_lookup import RestAuthorityLookup
except ImportError:
    from authority.base import (
        DEFAULT_AUTHORITY_BASE_URL,
        AuthorityIdentifier,
        AuthorityLookup,
        AuthorityRecord,
        BareIdentifier,
        LookupResult,
        SchemeUri,
        parse_element_identifier,
        parse_identifier,
    )
    from authority.cache import AuthorityCache, InMemoryAuthorityCache
    from authority.resolver import (
        AuthorityResolver,
        extract_language_code,
        parse_authority_metadata,
    )
    from authority.rest_lookup import RestAuthorityLookup


# Maps lookup_type string to lookup class
LOOKUPS: Final[dict[str, type[AuthorityLookup]]] = {
    "rest": RestAuthorityLookup,
}


def create_lookup(lookup_type: str, **kwargs: Any) -> AuthorityLookup:
    """Create an authority lookup by type name.

    Args:
        lookup_type: Lookup type identifier (see LOOKUPS)
        **kwargs: Constructor arguments of the lookup class

    Raises:
        ValueError: If lookup_type is not recognized
    """
    if lookup_type not in LOOKUPS:
        available_types = ", ".join(sorted(LOOKUPS))
        raise ValueError(
            f"Unknown authority lookup type: '{lookup_type}'. Available types: {available_types}"
        )
    return LOOKUPS[lookup_type](**kwargs)


__all__ = [
    "DEFAULT_AUTHORITY_BASE_URL",
    "AuthorityIdentifier",
    "AuthorityLookup",
    "AuthorityRecord",
    "BareIdentifier",
    "LookupResult",
    "SchemeUri",
    "parse_element_identifier",
    "parse_identifier",
    "AuthorityCache",
    "InMemoryAuthorityCache",
    "AuthorityResolver",
    "extract_language_code",
    "parse_authority_metadata",
    "RestAuthorityLookup",
    "LOOKUPS",
    "create_lookup",
]
