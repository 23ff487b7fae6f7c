"""Text extraction from Figma document trees."""

from __future__ import annotations

import sys
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from .errors import NodeNotFoundError, PageNotFoundError
from .structures import ROOT_FRAME, PageInfo, TextRecord

Node = Mapping[str, Any]

CONTAINER_TYPES = frozenset({"FRAME", "GROUP", "COMPONENT", "INSTANCE"})
REUSABLE_TYPES = frozenset({"COMPONENT", "INSTANCE"})
TEXT_TYPE = "TEXT"
PAGE_TYPE = "CANVAS"
SHORT_ID_LENGTH = 4


def _debug(message: str) -> None:
    print(f"[figmakeys][extract-debug] {message}", file=sys.stderr)


def short_node_id(node_id: str) -> str:
    """Return a short, display-friendly fragment of a node id.

    Figma ids look like ``"12:3456"``; the part after the colon varies between
    sibling instances, so it is preferred over the prefix.
    """

    _, _, tail = node_id.partition(":")
    if tail:
        return tail[:SHORT_ID_LENGTH]
    return node_id[:SHORT_ID_LENGTH]


def path_entry(node: Node) -> str:
    """Name under which a container contributes to the frame path."""

    name = str(node.get("name", ""))
    if node.get("type") in REUSABLE_TYPES:
        return f"{name} [{short_node_id(str(node.get('id', '')))}]"
    return name


def extract_text_nodes(
    node: Node,
    frame_path: Sequence[str] = (),
    only_visible: bool = True,
    debug: bool = False,
) -> List[TextRecord]:
    """Collect text leaves below ``node`` in depth-first pre-order."""

    records: List[TextRecord] = []
    stack: List[Tuple[Node, Tuple[str, ...]]] = [(node, tuple(frame_path))]

    while stack:
        current, parent_path = stack.pop()
        node_type = current.get("type")
        if debug:
            _debug(
                f"Processing node: {current.get('name')} ({node_type}) "
                f"[ID: {current.get('id')}]"
            )

        if only_visible and current.get("visible") is False:
            if debug:
                _debug("  -> skipped (hidden)")
            continue

        path = parent_path
        if node_type in CONTAINER_TYPES:
            entry = path_entry(current)
            path = parent_path + (entry,)
            if debug:
                _debug(f"  -> added to path: {entry}")

        characters = current.get("characters")
        if node_type == TEXT_TYPE and isinstance(characters, str) and characters.strip():
            text = characters.strip()
            records.append(
                TextRecord(
                    text=text,
                    frame_name=path[-1] if path else ROOT_FRAME,
                    frame_path=path,
                    node_id=str(current.get("id", "")),
                )
            )
            if debug:
                _debug(f'  -> extracted "{text}" at {" > ".join(path)}')

        children = current.get("children") or []
        for child in reversed(children):
            stack.append((child, path))

    return records


def get_available_pages(document: Node) -> List[PageInfo]:
    """List the pages (canvases) of a Figma file payload."""

    children = document.get("document", {}).get("children") or []
    return [
        PageInfo(id=str(child.get("id", "")), name=str(child.get("name", "")))
        for child in children
        if child.get("type") == PAGE_TYPE
    ]


def find_node_by_id(node: Node, node_id: str) -> Optional[Node]:
    """Depth-first search for the node carrying ``node_id``."""

    stack: List[Node] = [node]
    while stack:
        current = stack.pop()
        if current.get("id") == node_id:
            return current
        children = current.get("children") or []
        stack.extend(reversed(children))
    return None


def extract_text_from_page(
    document: Node,
    page_id: str | None = None,
    only_visible: bool = True,
    debug: bool = False,
) -> List[TextRecord]:
    """Extract text from the given page, or from the first page."""

    pages = document.get("document", {}).get("children") or []
    if not pages:
        return []

    if page_id:
        target = next((page for page in pages if page.get("id") == page_id), None)
    else:
        target = pages[0]

    if target is None:
        raise PageNotFoundError(f"Page {page_id} not found in Figma file")

    return extract_text_nodes(target, (), only_visible, debug)


def extract_text_from_node(
    document: Node,
    node_id: str,
    only_visible: bool = True,
    debug: bool = False,
) -> List[TextRecord]:
    """Extract text from one node and its descendants only."""

    root = document.get("document", {})
    target = find_node_by_id(root, node_id)
    if target is None:
        raise NodeNotFoundError(f"Node with ID {node_id} not found in Figma file")

    if debug:
        _debug(
            f"Target node: {target.get('name')} ({target.get('type')}) "
            f"[ID: {target.get('id')}], "
            f"{len(target.get('children') or [])} children"
        )
    return extract_text_nodes(target, (), only_visible, debug)


def extract_all_text(
    document: Node,
    page_id: str | None = None,
    node_id: str | None = None,
    only_visible: bool = True,
    debug: bool = False,
) -> List[TextRecord]:
    """Extract text using the narrowest scope given: node, then page, then first page."""

    if node_id:
        return extract_text_from_node(document, node_id, only_visible, debug)
    return extract_text_from_page(document, page_id, only_visible, debug)
