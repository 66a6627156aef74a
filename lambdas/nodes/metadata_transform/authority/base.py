"""Base types for authority vocabulary resolution.

Defines the lookup interface that every authority source implements, the
cached record type, and the authority identifier variant parsed from source
elements.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Union

DEFAULT_AUTHORITY_BASE_URL = "https://d-nb.info/gnd/"

# Authority URIs that carry no identifier (empty GND reference)
PLACEHOLDER_AUTHORITY_URIS: frozenset[str] = frozenset(
    {"https://d-nb.info/gnd/", "http://d-nb.info/gnd/"}
)


@dataclass(frozen=True)
class AuthorityRecord:
    """A resolved vocabulary record.

    Attributes:
        uri: Resolved (trimmed) URI used as cache key
        entries: Ordered (key, text) pairs returned by the authority source
        created_at: Creation time in epoch seconds
    """

    uri: str
    entries: tuple[tuple[str, str], ...]
    created_at: float

    def is_empty(self) -> bool:
        return not self.entries


@dataclass
class LookupResult:
    """Result of a single authority lookup.

    Attributes:
        success: Whether the lookup completed (a "not found" answer counts)
        entries: Ordered (key, text) pairs; empty if not found
        error_message: Error description if the lookup failed
        http_status_code: HTTP status of the final response, if any
    """

    success: bool
    entries: list[tuple[str, str]] = field(default_factory=list)
    error_message: str | None = None
    http_status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "entries": [list(entry) for entry in self.entries],
            "error_message": self.error_message,
            "http_status_code": self.http_status_code,
        }


class AuthorityLookup(ABC):
    """Source of authority vocabulary records: URI in, (key, text) pairs out."""

    @abstractmethod
    def lookup(self, uri: str) -> LookupResult:
        """Fetch the vocabulary entries for a URI.

        Implementations must not raise for network or payload problems; they
        report them through LookupResult.
        """

    @abstractmethod
    def get_lookup_name(self) -> str:
        """Return the unique name of this lookup implementation."""


@dataclass(frozen=True)
class BareIdentifier:
    """A schemeless identifier, resolved against the default vocabulary."""

    value: str

    def to_uri(self, base_url: str = DEFAULT_AUTHORITY_BASE_URL) -> str:
        return base_url + self.value.strip()


@dataclass(frozen=True)
class SchemeUri:
    """A value URI, optionally qualified by the authority scheme URI."""

    value_uri: str
    authority_uri: str | None = None

    def to_uri(self, base_url: str = DEFAULT_AUTHORITY_BASE_URL) -> str:
        value = self.value_uri.strip()
        if self.authority_uri and not value.startswith(self.authority_uri):
            return self.authority_uri + value
        return value


AuthorityIdentifier = Union[BareIdentifier, SchemeUri, None]


def parse_identifier(value: str | None, authority_uri: str | None = None) -> AuthorityIdentifier:
    """Classify an identifier value found in a source record.

    Args:
        value: Identifier or value URI
        authority_uri: Authority scheme URI, if the source names one

    Returns:
        BareIdentifier, SchemeUri, or None for empty and placeholder values
    """
    if value is None:
        return None
    value = value.strip()
    if not value or value in PLACEHOLDER_AUTHORITY_URIS:
        return None
    if authority_uri:
        return SchemeUri(value_uri=value, authority_uri=authority_uri.strip() or None)
    if value.startswith("http"):
        return SchemeUri(value_uri=value)
    return BareIdentifier(value=value)


def parse_element_identifier(attributes: dict[str, str]) -> AuthorityIdentifier:
    """Read the authority identifier from MODS-style element attributes.

    Without an ``authority`` attribute the bare ``valueURI`` is used. With
    one, ``authorityURI`` qualifies ``valueURI``.
    """
    value_uri = attributes.get("valueURI")
    if attributes.get("authority") is None:
        return parse_identifier(value_uri)
    return parse_identifier(value_uri, attributes.get("authorityURI"))
