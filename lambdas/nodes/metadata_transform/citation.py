"""Citation metadata harvesting.

Citation groups reference an external XML record (a bibliographic citation
service) by URL template. Placeholders of the form ``{FIELD}`` are filled
with the first value collected for that field so far, the document is
fetched, and the group's subfields are then evaluated against its root.
"""

from __future__ import annotations

import re
from typing import Mapping, Sequence
from urllib.parse import quote

import requests
from aws_lambda_powertools import Logger
from lxml import etree

logger = Logger()

PLACEHOLDER = re.compile(r"\{([A-Za-z0-9_]+)\}")


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True)


def prepare_url(url_template: str, collected_values: Mapping[str, Sequence[str]]) -> str:
    """Fill ``{FIELD}`` placeholders with URL-quoted collected values.

    Raises:
        ValueError: If a placeholder has no collected value
    """

    def substitute(match: re.Match) -> str:
        values = collected_values.get(match.group(1))
        if not values:
            raise ValueError(f"No value collected for URL placeholder {match.group(0)}")
        return quote(values[0], safe="")

    return PLACEHOLDER.sub(substitute, url_template)


class CitationFetcher:
    """Fetches and parses citation XML documents.

    Args:
        timeout: Request timeout in seconds
        headers: Extra request headers
    """

    DEFAULT_TIMEOUT_SECONDS = 10

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS, headers: dict[str, str] | None = None):
        self.timeout = timeout
        self.headers = headers or {"Accept": "application/xml"}

    def fetch(
        self, url_template: str, collected_values: Mapping[str, Sequence[str]]
    ) -> etree._Element | None:
        """Fetch the citation document for a group.

        Returns:
            Root element of the citation document, or None if the URL cannot
            be prepared or the document cannot be retrieved or parsed
        """
        try:
            url = prepare_url(url_template, collected_values)
        except ValueError as e:
            logger.warning("Cannot prepare citation URL", extra={"url": url_template, "error": str(e)})
            return None

        try:
            response = requests.get(url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("Citation fetch failed", extra={"url": url, "error": str(e)})
            return None

        try:
            return etree.fromstring(response.content, parser=_xml_parser())
        except etree.XMLSyntaxError as e:
            logger.error("Citation document is not well-formed", extra={"url": url, "error": str(e)})
            return None
