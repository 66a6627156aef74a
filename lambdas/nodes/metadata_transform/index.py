"""
Metadata Transform Node Lambda Handler.

This Lambda function turns a descriptive metadata document into index fields:
1. Resolves the field rules (inline and/or from S3)
2. Parses the XML document and, for METS, locates the logical structure node
3. Applies the rules, resolving authority data where configured
4. Returns the index fields, default text and grouped metadata records
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext
from lxml import etree

# Support both pytest imports (package-qualified) and Lambda runtime (absolute)
try:
    from nodes.metadata_transform.authority import (
        AuthorityResolver,
        InMemoryAuthorityCache,
        create_lookup,
    )
    from nodes.metadata_transform.citation import CitationFetcher
    from nodes.metadata_transform.config_loader import resolve_rules_config
    from nodes.metadata_transform.engine import MetadataTransformer
    from nodes.metadata_transform.retry import RetryConfig
    from nodes.metadata_transform.rules import RuleSet
    from nodes.metadata_transform.xpath_scope import (
        ElementContext,
        MetsMetadataSource,
        StructureNode,
        XPathEvaluator,
        build_mets_structure,
    )
except ImportError:
    from authority import AuthorityResolver, InMemoryAuthorityCache, create_lookup
    from citation import CitationFetcher
    from config_loader import resolve_rules_config
    from engine import MetadataTransformer
    from retry import RetryConfig
    from rules import RuleSet
    from xpath_scope import (
        ElementContext,
        MetsMetadataSource,
        StructureNode,
        XPathEvaluator,
        build_mets_structure,
    )

logger = Logger(service="metadata-transform")
tracer = Tracer()

METS_ROOT_TAG = "{http://www.loc.gov/METS/}mets"
METS_QUERY_PREFIX = "mets:xmlData/mods:mods/"

# Shared across warm invocations
_authority_cache: InMemoryAuthorityCache | None = None


@dataclass
class NodeConfig:
    """Configuration for the Metadata Transform Node.

    Attributes:
        rules_config: Inline rule configuration
        rules_config_s3_path: Key of a rule file in the IAC assets bucket
        authority_enabled: Resolve authority identifiers of grouped fields
        authority_endpoint_template: Lookup URL template containing ``{uri}``;
            None fetches the identifier URI itself
        authority_cache_ttl_hours: Time-to-live of cached authority records
        authority_cache_size_warning: Cache size above which a warning is logged
        authority_timeout_seconds: Timeout of a single authority request
        max_retries: Maximum retry attempts for transient lookup errors
        initial_backoff_seconds: Initial backoff delay for retries
    """

    rules_config: dict[str, Any] | None = None
    rules_config_s3_path: str | None = None
    authority_enabled: bool = False
    authority_endpoint_template: str | None = None
    authority_cache_ttl_hours: float = 24
    authority_cache_size_warning: int = 10000
    authority_timeout_seconds: float = 10
    max_retries: int = 2
    initial_backoff_seconds: float = 0.5

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> NodeConfig:
        """Create NodeConfig from a dictionary.

        Raises:
            ValueError: If no rules are configured or a value is malformed
        """
        if not config.get("rules_config") and not config.get("rules_config_s3_path"):
            raise ValueError("Missing required configuration: rules_config or rules_config_s3_path")

        try:
            return cls(
                rules_config=config.get("rules_config"),
                rules_config_s3_path=config.get("rules_config_s3_path") or None,
                authority_enabled=_as_bool(config.get("authority_enabled")),
                authority_endpoint_template=config.get("authority_endpoint_template") or None,
                authority_cache_ttl_hours=float(config.get("authority_cache_ttl_hours", 24)),
                authority_cache_size_warning=int(config.get("authority_cache_size_warning", 10000)),
                authority_timeout_seconds=float(config.get("authority_timeout_seconds", 10)),
                max_retries=int(config.get("max_retries", 2)),
                initial_backoff_seconds=float(config.get("initial_backoff_seconds", 0.5)),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid node configuration value: {e}") from e


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _get_node_config(event: dict[str, Any]) -> NodeConfig:
    """Extract node configuration from the event.

    Values in ``payload.data.node_config`` take precedence over environment
    variables.

    Raises:
        ValueError: If configuration is invalid or missing
    """
    payload_data = event.get("payload", {}).get("data", {})
    node_config = payload_data.get("node_config", {})

    def setting(key: str, env_var: str, default: Any) -> Any:
        value = node_config.get(key)
        if value is None or value == "":
            value = os.environ.get(env_var, default)
        return value

    config = {
        "rules_config": node_config.get("rules_config"),
        "rules_config_s3_path": setting("rules_config_s3_path", "RULES_CONFIG_S3_PATH", ""),
        "authority_enabled": setting("authority_enabled", "AUTHORITY_ENABLED", "false"),
        "authority_endpoint_template": setting(
            "authority_endpoint_template", "AUTHORITY_ENDPOINT_TEMPLATE", ""
        ),
        "authority_cache_ttl_hours": setting(
            "authority_cache_ttl_hours", "AUTHORITY_CACHE_TTL_HOURS", "24"
        ),
        "authority_cache_size_warning": setting(
            "authority_cache_size_warning", "AUTHORITY_CACHE_SIZE_WARNING", "10000"
        ),
        "authority_timeout_seconds": setting(
            "authority_timeout_seconds", "AUTHORITY_TIMEOUT_SECONDS", "10"
        ),
        "max_retries": setting("max_retries", "MAX_RETRIES", "2"),
        "initial_backoff_seconds": setting("initial_backoff_seconds", "INITIAL_BACKOFF_SECONDS", "0.5"),
    }
    return NodeConfig.from_dict(config)


def _get_authority_cache(node_config: NodeConfig) -> InMemoryAuthorityCache:
    """Return the process-wide authority cache.

    Records survive warm invocations. A changed TTL or size warning
    threshold is applied to the existing cache; the TTL is checked on read,
    so it takes effect for cached records too.
    """
    global _authority_cache
    if _authority_cache is None:
        _authority_cache = InMemoryAuthorityCache(
            ttl_hours=node_config.authority_cache_ttl_hours,
            size_warning_threshold=node_config.authority_cache_size_warning,
        )
    elif (
        _authority_cache.ttl_hours != node_config.authority_cache_ttl_hours
        or _authority_cache.size_warning_threshold != node_config.authority_cache_size_warning
    ):
        logger.info(
            "Authority cache settings changed",
            extra={
                "ttl_hours": node_config.authority_cache_ttl_hours,
                "size_warning_threshold": node_config.authority_cache_size_warning,
            },
        )
        _authority_cache.ttl_hours = node_config.authority_cache_ttl_hours
        _authority_cache.size_warning_threshold = node_config.authority_cache_size_warning
    return _authority_cache


def _build_resolver(node_config: NodeConfig) -> AuthorityResolver | None:
    if not node_config.authority_enabled:
        return None
    lookup = create_lookup(
        "rest",
        timeout=node_config.authority_timeout_seconds,
        endpoint_template=node_config.authority_endpoint_template,
        retry_config=RetryConfig(
            max_retries=node_config.max_retries,
            initial_backoff_seconds=node_config.initial_backoff_seconds,
        ),
    )
    return AuthorityResolver(lookup, cache=_get_authority_cache(node_config))


def parse_document(document: str | bytes) -> etree._Element:
    """Parse the XML document.

    Raises:
        ValueError: If the document is empty or not well-formed
    """
    if not document:
        raise ValueError("No document provided in event payload")
    if isinstance(document, str):
        document = document.encode("utf-8")
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        return etree.fromstring(document, parser=parser)
    except etree.XMLSyntaxError as e:
        raise ValueError(f"Document is not well-formed XML: {e}") from e


def _select_structure_node(structure: StructureNode, log_id: str | None) -> StructureNode:
    if log_id:
        node = structure.find(log_id)
        if node is None:
            raise ValueError(f"Logical structure node not found: {log_id}")
        return node
    for node in structure.iter_nodes():
        if node.dmd_id and not node.anchor:
            return node
    raise ValueError("No logical structure node with descriptive metadata found")


def locate_element(
    root: etree._Element, evaluator: XPathEvaluator, log_id: str | None = None
) -> tuple[etree._Element, ElementContext | None, str]:
    """Find the metadata element to transform.

    METS documents are resolved to the metadata block of a logical structure
    node (the one named by log_id, or the first non-anchor node with
    metadata); any other document is transformed from its root element.

    Returns:
        Tuple of (element, scope context, default query prefix)

    Raises:
        ValueError: If the requested METS node or its metadata block is missing
    """
    if root.tag != METS_ROOT_TAG:
        return root, None, ""

    structure = build_mets_structure(root, evaluator)
    if structure is None:
        raise ValueError("METS document has no logical structure map")

    node = _select_structure_node(structure, log_id)
    source = MetsMetadataSource(root, evaluator)
    element = source.metadata_block(node.dmd_id) if node.dmd_id else None
    if element is None:
        raise ValueError(f"No metadata block found for logical structure node {node.log_id}")
    return element, ElementContext(node=node, source=source), METS_QUERY_PREFIX


@logger.inject_lambda_context
@tracer.capture_lambda_handler
def lambda_handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    """
    Main handler for the metadata transform node.

    Event structure:
    {
        "payload": {
            "data": {
                "document": "<mets:mets ...>...</mets:mets>",
                "log_id": "LOG_0001",        # Optional METS structure node
                "query_prefix": "...",        # Optional xpath prefix override
                "default_value": "...",       # Optional initial default text
                "node_config": {...}          # Optional dynamic config
            }
        }
    }

    Args:
        event: Standardized Lambda event
        context: Lambda context

    Returns:
        Response with the transformed index document
    """
    logger.info("Metadata transform node started", extra={"event_keys": list(event.keys())})

    try:
        node_config = _get_node_config(event)
        payload_data = event.get("payload", {}).get("data", {})

        rules_config = resolve_rules_config(
            inline_config=node_config.rules_config,
            s3_path=node_config.rules_config_s3_path,
        )
        rule_set = RuleSet.from_dict(rules_config)
        evaluator = XPathEvaluator(rule_set.namespaces)

        root = parse_document(payload_data.get("document"))
        log_id = payload_data.get("log_id")
        element, element_context, query_prefix = locate_element(root, evaluator, log_id)
        if payload_data.get("query_prefix") is not None:
            query_prefix = payload_data["query_prefix"]

        transformer = MetadataTransformer(
            rule_set,
            evaluator=evaluator,
            resolver=_build_resolver(node_config),
            citation_fetcher=CitationFetcher(timeout=node_config.authority_timeout_seconds),
        )
        result = transformer.transform(
            element,
            context=element_context,
            query_prefix=query_prefix,
            default_value=payload_data.get("default_value") or "",
        )

        logger.info(
            "Metadata transform node completed",
            extra={
                "log_id": log_id,
                "field_count": len(result.fields),
                "group_count": len(result.groups),
            },
        )

        return {
            "statusCode": 200,
            "body": {
                "message": "Metadata transformation completed",
                "log_id": element_context.node.log_id if element_context else None,
                **result.to_dict(),
            },
        }

    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return {
            "statusCode": 400,
            "body": {
                "error": str(e),
                "message": "Invalid configuration or input",
            },
        }

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return {
            "statusCode": 500,
            "body": {
                "error": str(e),
                "message": "Internal server error",
            },
        }
