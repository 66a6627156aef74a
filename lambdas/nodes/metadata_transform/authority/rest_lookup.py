"""REST lookup for authority vocabulary records.

Fetches the record behind an authority URI over HTTP and flattens it into
ordered (key, text) pairs. Payloads may be JSON or XML; the format is either
configured or detected from the Content-Type header.

Accepted payload shapes:
    JSON list:    [{"key": "NORM_NAME", "value": "Goethe"}, ...]
    JSON mapping: {"NORM_NAME": "Goethe", "NORM_ALTNAME": ["A", "B"]}
    XML:          <record><NORM_NAME>Goethe</NORM_NAME>...</record>
"""

from __future__ import annotations

import re
from typing import Any, Final, override
from urllib.parse import quote

import requests
import xmltodict
from aws_lambda_powertools import Logger

try:
    from nodes.metadata_transform.authority.base import AuthorityLookup, LookupResult
    from nodes.metadata_transform.retry import (
        RETRYABLE_STATUS_CODES,
        RetryConfig,
        execute_with_retry,
    )
except ImportError:
    from authority.base import AuthorityLookup, LookupResult
    from retry import RETRYABLE_STATUS_CODES, RetryConfig, execute_with_retry

logger = Logger()

_XML_DECLARATION = re.compile(r"<\?xml[^?]*\?>")


class RestAuthorityLookup(AuthorityLookup):
    """Authority lookup backed by an HTTP endpoint.

    Args:
        timeout: Request timeout in seconds
        endpoint_template: Optional URL template containing ``{uri}``; the
            authority URI is URL-quoted into it. Without a template the
            authority URI itself is requested.
        response_format: "json", "xml" or "auto"
        retry_config: Retry behavior for transient failures
        headers: Extra request headers
    """

    DEFAULT_TIMEOUT_SECONDS: Final[int] = 10
    RESPONSE_FORMAT_JSON: Final[str] = "json"
    RESPONSE_FORMAT_XML: Final[str] = "xml"
    RESPONSE_FORMAT_AUTO: Final[str] = "auto"
    SUPPORTED_RESPONSE_FORMATS: Final[frozenset[str]] = frozenset(
        {RESPONSE_FORMAT_JSON, RESPONSE_FORMAT_XML, RESPONSE_FORMAT_AUTO}
    )

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        endpoint_template: str | None = None,
        response_format: str = RESPONSE_FORMAT_AUTO,
        retry_config: RetryConfig | None = None,
        headers: dict[str, str] | None = None,
    ):
        if endpoint_template and "{uri}" not in endpoint_template:
            raise ValueError(f"Endpoint template must contain '{{uri}}': {endpoint_template}")

        self.timeout = timeout
        self.endpoint_template = endpoint_template or None
        response_format = (response_format or self.RESPONSE_FORMAT_AUTO).lower()
        if response_format not in self.SUPPORTED_RESPONSE_FORMATS:
            response_format = self.RESPONSE_FORMAT_AUTO
        self.response_format = response_format
        self.retry_config = retry_config or RetryConfig()
        self.headers = headers or {}

    @override
    def get_lookup_name(self) -> str:
        return "rest"

    def build_url(self, uri: str) -> str:
        if self.endpoint_template:
            return self.endpoint_template.replace("{uri}", quote(uri, safe=""))
        return uri

    @override
    def lookup(self, uri: str) -> LookupResult:
        if not uri or not uri.strip():
            return LookupResult(success=False, error_message="Authority URI is empty")

        url = self.build_url(uri.strip())

        def fetch() -> requests.Response:
            response = requests.get(url, headers=self.headers, timeout=self.timeout)
            if response.status_code in RETRYABLE_STATUS_CODES:
                response.raise_for_status()
            return response

        retry_result = execute_with_retry(
            fetch, self.retry_config, operation_name=f"Authority lookup {uri}"
        )
        if not retry_result.success:
            status = getattr(getattr(retry_result.last_error, "response", None), "status_code", None)
            return LookupResult(
                success=False,
                error_message=retry_result.error_message,
                http_status_code=status,
            )

        return self._process_response(retry_result.result, uri)

    def _process_response(self, response: requests.Response, uri: str) -> LookupResult:
        if response.status_code == 404:
            logger.info("Authority record not found", extra={"uri": uri})
            return LookupResult(success=True, http_status_code=404)

        if not response.ok:
            return LookupResult(
                success=False,
                error_message=f"Authority lookup failed with status {response.status_code}",
                http_status_code=response.status_code,
            )

        text = response.text.strip() if response.text else ""
        if not text:
            return LookupResult(success=True, http_status_code=response.status_code)

        try:
            if self._detect_response_format(response) == self.RESPONSE_FORMAT_XML:
                entries = self._parse_xml(text)
            else:
                entries = self._parse_json(response)
        except ValueError as e:
            logger.warning(
                "Malformed authority payload",
                extra={"uri": uri, "error": str(e)},
            )
            return LookupResult(
                success=False,
                error_message=f"Malformed authority payload: {e}",
                http_status_code=response.status_code,
            )

        return LookupResult(success=True, entries=entries, http_status_code=response.status_code)

    def _detect_response_format(self, response: requests.Response) -> str:
        if self.response_format != self.RESPONSE_FORMAT_AUTO:
            return self.response_format

        content_type = response.headers.get("Content-Type", "").lower()
        if "xml" in content_type:
            return self.RESPONSE_FORMAT_XML
        if "json" in content_type:
            return self.RESPONSE_FORMAT_JSON
        if response.text.strip().startswith("<"):
            return self.RESPONSE_FORMAT_XML
        return self.RESPONSE_FORMAT_JSON

    def _parse_json(self, response: requests.Response) -> list[tuple[str, str]]:
        try:
            data = response.json()
        except (requests.exceptions.JSONDecodeError, ValueError) as e:
            raise ValueError(f"Invalid JSON: {e}") from e

        if isinstance(data, list):
            entries: list[tuple[str, str]] = []
            for item in data:
                if not isinstance(item, dict) or "key" not in item:
                    raise ValueError(f"List entries need a 'key': {item!r}")
                value = item.get("value")
                if value is not None:
                    entries.append((str(item["key"]), str(value)))
            return entries

        if isinstance(data, dict):
            return _flatten_mapping(data)

        raise ValueError(f"Unsupported JSON payload type: {type(data).__name__}")

    def _parse_xml(self, text: str) -> list[tuple[str, str]]:
        content = _XML_DECLARATION.sub("", text).strip().strip("\ufeff\ufffe")
        if not content:
            return []
        try:
            data = xmltodict.parse(content)
        except Exception as e:
            raise ValueError(f"Invalid XML: {e}") from e

        # Single root element; its children are the keys
        root = next(iter(data.values()), None) if data else None
        if not isinstance(root, dict):
            return []
        return _flatten_mapping(root)


def _flatten_mapping(data: dict[str, Any]) -> list[tuple[str, str]]:
    entries: list[tuple[str, str]] = []
    for key, value in data.items():
        if key.startswith("@") or key == "#text":
            continue
        values = value if isinstance(value, list) else [value]
        for item in values:
            text = _text_of(item)
            if text is not None:
                entries.append((key, text))
    return entries


def _text_of(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, dict):
        text = value.get("#text")
        return str(text) if text is not None else None
    return str(value)
