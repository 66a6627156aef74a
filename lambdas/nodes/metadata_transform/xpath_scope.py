"""XPath evaluation and metadata scope expansion.

Source documents are parsed with lxml. A METS document describes a logical
hierarchy (volume, chapter, article ...) in its ``mets:structMap``; each
structure node links to a descriptive metadata block (``mets:dmdSec``) by
DMDID. Rules can pull values not only from the block of the node being
indexed but also from the blocks of its children and ancestors.
"""

from __future__ import annotations

import logging
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

from lxml import etree

if TYPE_CHECKING:
    from nodes.metadata_transform.rules import FieldRule

logger = logging.getLogger(__name__)

ROOT_PLACEHOLDER: Final[str] = "{{{ROOT}}}"
DISPLAY_FORM_SUFFIX: Final[str] = "/mods:displayForm"

DEFAULT_NAMESPACES: Final[dict[str, str]] = {
    "mets": "http://www.loc.gov/METS/",
    "mods": "http://www.loc.gov/mods/v3",
    "dc": "http://purl.org/dc/elements/1.1/",
    "xlink": "http://www.w3.org/1999/xlink",
    "gml": "http://www.opengis.net/gml/3.2",
    "tei": "http://www.tei-c.org/ns/1.0",
    "lido": "http://www.lido-schema.org",
    "marc": "http://www.loc.gov/MARC21/slim",
    "ead": "urn:isbn:1-931666-22-9",
}


class XPathEvaluator:
    """Evaluate XPath expressions with a fixed set of namespace bindings."""

    def __init__(self, namespaces: dict[str, str] | None = None):
        self.namespaces = {**DEFAULT_NAMESPACES, **(namespaces or {})}

    def evaluate(self, query: str, element: etree._Element, **variables: Any) -> list[Any]:
        """Evaluate a query and always return a list.

        Invalid expressions are logged and produce an empty result.
        """
        if element is None or not query:
            return []
        try:
            result = element.xpath(query, namespaces=self.namespaces, **variables)
        except etree.XPathError as e:
            logger.error(f"Invalid XPath expression '{query}': {e}")
            return []

        if isinstance(result, list):
            return result
        # Scalar results (string, number, boolean)
        return [result]

    def evaluate_elements(self, query: str, element: etree._Element, **variables: Any) -> list[etree._Element]:
        return [
            item
            for item in self.evaluate(query, element, **variables)
            if isinstance(item, etree._Element)
        ]

    def evaluate_strings(self, query: str, element: etree._Element) -> list[str]:
        values = []
        for item in self.evaluate(query, element):
            value = object_to_string(item)
            if value is not None:
                values.append(value)
        return values


def element_text(element: etree._Element) -> str:
    """Direct text content of an element (text of child elements excluded)."""
    parts = [element.text or ""]
    parts.extend(child.tail or "" for child in element)
    return "".join(parts)


def object_to_string(item: Any) -> str | None:
    """Render one XPath result item as a string.

    Elements yield their direct text, attributes and text nodes their value.
    Integral numbers are rendered without a fraction and booleans as
    ``true``/``false``.
    """
    if item is None:
        return None
    if isinstance(item, etree._Element):
        return unicodedata.normalize("NFC", element_text(item))
    if isinstance(item, bool):
        return "true" if item else "false"
    if isinstance(item, float):
        return str(int(item)) if item.is_integer() else str(item)
    if isinstance(item, str):
        return unicodedata.normalize("NFC", str(item))
    logger.error(f"Unknown XPath result type: {type(item).__name__}")
    return None


def build_query(xpath: str, query_prefix: str | None, grouped: bool = False) -> str:
    """Combine a rule xpath with the element query prefix.

    Grouped rules select the name element itself, so a trailing
    ``/mods:displayForm`` is cut off. A ``{{{ROOT}}}`` placeholder (used
    inside expressions such as ``concat()``) is replaced by the prefix;
    otherwise the prefix is prepended.
    """
    if grouped and xpath.endswith(DISPLAY_FORM_SUFFIX):
        xpath = xpath[: -len(DISPLAY_FORM_SUFFIX)]
        logger.debug(f"Grouped xpath shortened to {xpath}")
    if ROOT_PLACEHOLDER in xpath:
        return xpath.replace(ROOT_PLACEHOLDER, query_prefix or "")
    return (query_prefix or "") + xpath


@dataclass(eq=False)
class StructureNode:
    """A node of the logical structure hierarchy.

    Attributes:
        log_id: Logical ID of the node
        dmd_id: ID of the linked descriptive metadata block, if any
        doc_type: Structure type (monograph, chapter ...)
        anchor: True for collection roots (multi-volume work, periodical)
        parent: Parent node
        children: Child nodes in document order
    """

    log_id: str | None
    dmd_id: str | None = None
    doc_type: str | None = None
    anchor: bool = False
    parent: StructureNode | None = None
    children: list[StructureNode] = field(default_factory=list)

    def iter_nodes(self):
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def find(self, log_id: str) -> StructureNode | None:
        for node in self.iter_nodes():
            if node.log_id == log_id:
                return node
        return None


class MetadataSource(ABC):
    """Resolves DMDIDs to descriptive metadata blocks."""

    @abstractmethod
    def metadata_block(self, dmd_id: str) -> etree._Element | None:
        """Return the metadata block for dmd_id, or None if there is none."""


class MetsMetadataSource(MetadataSource):
    """Metadata blocks of a parsed METS document."""

    def __init__(self, root: etree._Element, evaluator: XPathEvaluator | None = None):
        self.root = root
        self.evaluator = evaluator or XPathEvaluator()

    def metadata_block(self, dmd_id: str) -> etree._Element | None:
        if not dmd_id:
            return None
        blocks = self.evaluator.evaluate_elements(
            "//mets:dmdSec[@ID=$dmdid]/mets:mdWrap", self.root, dmdid=dmd_id
        )
        return blocks[0] if blocks else None


def build_mets_structure(
    root: etree._Element, evaluator: XPathEvaluator | None = None
) -> StructureNode | None:
    """Build the logical structure tree of a METS document.

    Returns:
        The top node of the logical structMap, or None if there is none
    """
    evaluator = evaluator or XPathEvaluator()
    top_divs = evaluator.evaluate_elements(
        "//mets:structMap[@TYPE='LOGICAL']/mets:div", root
    )
    if not top_divs:
        return None

    def to_node(div: etree._Element, parent: StructureNode | None) -> StructureNode:
        node = StructureNode(
            log_id=div.get("ID"),
            dmd_id=(div.get("DMDID") or "").split(" ")[0] or None,
            doc_type=div.get("TYPE"),
            anchor=bool(evaluator.evaluate_elements("mets:mptr", div)),
            parent=parent,
        )
        node.children = [
            to_node(child, node) for child in evaluator.evaluate_elements("mets:div", div)
        ]
        return node

    return to_node(top_divs[0], None)


@dataclass
class ElementContext:
    """Position of the element being indexed within its document."""

    node: StructureNode | None = None
    source: MetadataSource | None = None


class ScopeResolver:
    """Expands a rule's element scope to child and ancestor metadata blocks."""

    def expand(
        self,
        rule: FieldRule,
        element: etree._Element | None,
        context: ElementContext | None,
    ) -> list[etree._Element]:
        """Return the elements a rule's xpaths are evaluated against.

        The current element comes first, followed by the blocks of the
        node's children (``child=all``) and of its ancestors, nearest first
        (``parents=first|all``). The ancestor walk stops at an anchor.
        Duplicates are dropped; missing DMDIDs and blocks are logged.
        """
        elements: list[etree._Element] = []
        if element is not None:
            elements.append(element)

        if context is None or context.node is None or context.source is None:
            return elements

        dmd_ids: list[str] = []
        node = context.node

        if rule.child == "all":
            dmd_ids.extend(child.dmd_id for child in node.children if child.dmd_id)

        if rule.parents in ("first", "all"):
            parent = node.parent
            while parent is not None and not parent.anchor:
                if parent.dmd_id:
                    dmd_ids.append(parent.dmd_id)
                else:
                    logger.warning(
                        f"DMDID for parent element '{parent.log_id}' of '{node.log_id}' not found"
                    )
                if rule.parents == "first":
                    break
                parent = parent.parent

        for dmd_id in dict.fromkeys(dmd_ids):
            block = context.source.metadata_block(dmd_id)
            if block is None:
                logger.warning(f"Field {rule.field_name}: metadata block not found for DMDID {dmd_id}")
                continue
            if not any(block is existing for existing in elements):
                elements.append(block)

        return elements
