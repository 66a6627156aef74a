"""Rule configuration loading.

Field rules for a site are usually too large to keep inline in the node
configuration, so they can be stored as a JSON document in the IAC assets
bucket. Inline rules are merged on top, field by field, which lets a
pipeline override a few fields of a shared rule file.

Usage:
    from config_loader import resolve_rules_config

    rules_config = resolve_rules_config(
        inline_config=node_config.rules_config,
        s3_path=node_config.rules_config_s3_path,
    )
    rule_set = RuleSet.from_dict(rules_config)
"""

import json
import os
from functools import lru_cache
from typing import Any

import boto3
from botocore.exceptions import ClientError

# Module-level S3 client for Lambda warm starts
_s3_client: Any = None


def get_s3_client() -> Any:
    """Get or create the S3 client (reused across invocations)."""
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client("s3")
    return _s3_client


@lru_cache(maxsize=10)
def load_rules_from_s3(bucket: str, key: str) -> dict[str, Any]:
    """Load and cache a rule file from S3.

    Args:
        bucket: S3 bucket name (IAC assets bucket)
        key: S3 object key (e.g., "metadata-rules/mets-mods.json")

    Returns:
        Parsed rule configuration

    Raises:
        ValueError: If the file is missing, unreadable or not a JSON object
    """
    try:
        response = get_s3_client().get_object(Bucket=bucket, Key=key)
        content = response["Body"].read().decode("utf-8")
        config = json.loads(content)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        if error_code in ("NoSuchKey", "404"):
            raise ValueError(f"Rules file not found: s3://{bucket}/{key}") from e
        raise ValueError(f"Failed to load rules from s3://{bucket}/{key}: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in rules file s3://{bucket}/{key}: {e}") from e

    if not isinstance(config, dict):
        raise ValueError(f"Rules file s3://{bucket}/{key} must contain a JSON object")
    return config


def merge_rules(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge inline rules over base rules.

    ``fields`` and ``namespaces`` are merged key by key (an overriding field
    replaces all rule variants of that field); other top-level keys are
    replaced.
    """
    merged = dict(base)
    for key, value in overrides.items():
        if key in ("fields", "namespaces") and isinstance(value, dict):
            merged[key] = {**(base.get(key) or {}), **value}
        else:
            merged[key] = value
    return merged


def resolve_rules_config(
    inline_config: dict[str, Any] | None = None, s3_path: str | None = None
) -> dict[str, Any]:
    """Resolve the rule configuration from inline rules and/or S3.

    Args:
        inline_config: Inline rules (override S3 rules when both are given)
        s3_path: Key of a rule file in the IAC_ASSETS_BUCKET bucket

    Returns:
        Resolved rule configuration

    Raises:
        ValueError: If no rules are configured, if an S3 path is given but
            IAC_ASSETS_BUCKET is not set, or if the S3 file cannot be loaded
    """
    inline_config = inline_config or {}

    if s3_path:
        bucket = os.environ.get("IAC_ASSETS_BUCKET")
        if not bucket:
            raise ValueError(
                "IAC_ASSETS_BUCKET environment variable not set. "
                "Cannot load rules from S3."
            )
        s3_config = load_rules_from_s3(bucket, s3_path)
        if inline_config:
            return merge_rules(s3_config, inline_config)
        return s3_config

    if not inline_config:
        raise ValueError("No rules configured: set rules_config or rules_config_s3_path")
    return inline_config


def clear_config_cache() -> None:
    """Clear the cached S3 rule files."""
    load_rules_from_s3.cache_clear()
