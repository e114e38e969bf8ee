"""GoalPilot Selector Resolver: DOM snapshots and element grounding.

Extracts a serializable ``DOMTree`` from a live page by evaluating a
read-only script, and converts between an element's structural path
(``/html/body/div[2]/button``) and short CSS locators the browser driver
understands.

Node ids (``dom-N``) are scoped to one extraction. Two trees never share
identity, even when they describe the same page.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger("goalpilot.engine.selector_resolver")

ROOT_PATH = "/"
BODY_LOCATOR = "body"

ACCEPTED_TAGS = frozenset(
    {
        "body", "div", "main", "article", "section", "nav", "header", "footer",
        "input", "button", "a", "form", "p", "span",
        "h1", "h2", "h3", "h4", "h5", "h6",
    }
)  # fmt: skip
DENIED_TAGS = frozenset({"svg", "script", "style", "link", "meta", "noscript", "template"})

# Attributes worth showing to the oracle, in display order
SUMMARY_ATTRIBUTES = (
    "id", "class", "href", "type", "name", "placeholder", "value",
    "title", "alt", "role", "data-testid", "aria-label",
)  # fmt: skip

# Walks document.body; a throwing subtree is skipped so a partial tree survives.
DOM_SCRIPT = """
() => {
  const accepted = new Set(%s);
  const denied = new Set(%s);
  const map = {};
  let counter = 0;

  function isAccepted(node) {
    if (!node || !node.tagName) return false;
    const tag = node.tagName.toLowerCase();
    if (accepted.has(tag)) return true;
    return !denied.has(tag);
  }

  function pathOf(node) {
    const segments = [];
    let current = node;
    while (current && current.nodeType === Node.ELEMENT_NODE) {
      let index = 0;
      let sibling = current.previousSibling;
      while (sibling) {
        if (sibling.nodeType === Node.ELEMENT_NODE && sibling.nodeName === current.nodeName) index++;
        sibling = sibling.previousSibling;
      }
      const tag = current.tagName.toLowerCase();
      segments.unshift(index > 0 ? `${tag}[${index + 1}]` : tag);
      current = current.parentNode;
    }
    return '/' + segments.join('/');
  }

  function build(node) {
    try {
      if (node.nodeType === Node.TEXT_NODE) {
        const text = (node.textContent || '').trim();
        const parent = node.parentElement;
        if (!text || !parent || parent.tagName.toLowerCase() === 'script') return null;
        const id = `dom-${counter++}`;
        map[id] = { type: 'TEXT_NODE', text: text, path: pathOf(parent) };
        return id;
      }
      if (node.nodeType !== Node.ELEMENT_NODE || !isAccepted(node)) return null;
      const data = { tag: node.tagName.toLowerCase(), attributes: {}, children: [], path: pathOf(node) };
      for (const name of (node.getAttributeNames ? node.getAttributeNames() : [])) {
        data.attributes[name] = node.getAttribute(name);
      }
      for (const child of node.childNodes) {
        const childId = build(child);
        if (childId) data.children.push(childId);
      }
      if (data.tag === 'a' && data.children.length === 0 && !data.attributes.href) return null;
      const id = `dom-${counter++}`;
      map[id] = data;
      return id;
    } catch (e) {
      return null;
    }
  }

  const rootId = document.body ? build(document.body) : null;
  return { rootId: rootId, map: map };
}
""" % (
    sorted(ACCEPTED_TAGS),
    sorted(DENIED_TAGS),
)


@dataclasses.dataclass
class ElementNode:
    tag: str
    attributes: dict[str, str]
    child_ids: list[str]
    structural_path: str


@dataclasses.dataclass
class TextNode:
    text: str
    structural_path: str


DOMNode = Union[ElementNode, TextNode]


@dataclasses.dataclass
class DOMTree:
    """A DOM snapshot: every child id resolves and the root is always present."""

    root_id: str
    node_by_id: dict[str, DOMNode]

    @classmethod
    def empty(cls) -> DOMTree:
        """A tree holding only a bare body, used when extraction fails."""
        return cls(
            root_id="dom-root",
            node_by_id={"dom-root": ElementNode(tag="body", attributes={}, child_ids=[], structural_path="/html/body")},
        )

    @property
    def root(self) -> DOMNode:
        return self.node_by_id[self.root_id]

    def __len__(self) -> int:
        return len(self.node_by_id)

    def walk(self):
        """Yield ``(node_id, node, depth)`` in document order."""
        stack = [(self.root_id, 0)]
        seen: set[str] = set()
        while stack:
            node_id, depth = stack.pop()
            if node_id in seen:
                continue
            seen.add(node_id)
            node = self.node_by_id[node_id]
            yield node_id, node, depth
            if isinstance(node, ElementNode):
                for child_id in reversed(node.child_ids):
                    stack.append((child_id, depth + 1))


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class SelectorResolver:
    """Extracts DOM trees from a page and grounds element references."""

    async def extract(self, page: Page) -> DOMTree:
        """Snapshot the live document.

        Never raises: a page that throws mid-extraction yields whatever
        the script gathered, or an empty tree.
        """
        try:
            raw = await page.evaluate(DOM_SCRIPT)
        except Exception as exc:
            logger.warning("DOM extraction failed, using empty tree: %s", exc)
            return DOMTree.empty()
        return build_tree(raw)

    def ground(self, locator: str) -> str:
        """Return a driver-native locator, converting structural paths."""
        if is_structural_path(locator):
            return to_locator(locator)
        return locator


def build_tree(raw: Any) -> DOMTree:
    """Normalize the extraction script's output into a DOMTree."""
    if not isinstance(raw, dict):
        return DOMTree.empty()
    root_id = raw.get("rootId")
    raw_map = raw.get("map")
    if not isinstance(root_id, str) or not isinstance(raw_map, dict) or root_id not in raw_map:
        logger.warning("DOM extraction returned no root, using empty tree")
        return DOMTree.empty()

    nodes: dict[str, DOMNode] = {}
    for node_id, data in raw_map.items():
        if not isinstance(data, dict):
            continue
        path = data.get("path") if isinstance(data.get("path"), str) else ""
        if data.get("type") == "TEXT_NODE":
            nodes[node_id] = TextNode(text=str(data.get("text", "")), structural_path=path)
            continue
        tag = str(data.get("tag") or data.get("tagName") or "").lower()
        if not tag or tag in DENIED_TAGS:
            continue
        attributes = data.get("attributes") if isinstance(data.get("attributes"), dict) else {}
        children = data.get("children") if isinstance(data.get("children"), list) else []
        nodes[node_id] = ElementNode(
            tag=tag,
            attributes={str(k): "" if v is None else str(v) for k, v in attributes.items()},
            child_ids=[c for c in children if isinstance(c, str)],
            structural_path=path,
        )

    if root_id not in nodes:
        return DOMTree.empty()

    # Drop children that did not survive normalization
    for node in nodes.values():
        if isinstance(node, ElementNode):
            node.child_ids = [c for c in node.child_ids if c in nodes]
    return DOMTree(root_id=root_id, node_by_id=nodes)


# ---------------------------------------------------------------------------
# Locators
# ---------------------------------------------------------------------------

_SEGMENT_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9-]*)(?:\[(\d+)\])?$")
_CSS_IDENT_RE = re.compile(r"^-?[_a-zA-Z][_a-zA-Z0-9-]*$")

# Unique per document, so an index adds nothing
_SINGLETON_TAGS = frozenset({"html", "body"})


def is_structural_path(locator: str) -> bool:
    return locator.startswith(ROOT_PATH)


def structural_path_of(node: DOMNode) -> str:
    return node.structural_path


def to_locator(path: str) -> str:
    """Convert a structural path into a CSS ``nth-of-type`` chain.

    Pure and total. Empty and root paths map to ``body``; a segment that is
    not ``tag`` or ``tag[n]`` passes through unchanged.
    """
    if not path or path == ROOT_PATH:
        return BODY_LOCATOR
    trimmed = path[1:] if path.startswith(ROOT_PATH) else path
    css: list[str] = []
    for segment in trimmed.split("/"):
        if not segment:
            continue
        match = _SEGMENT_RE.match(segment)
        if not match:
            css.append(segment)
            continue
        tag, index = match.group(1).lower(), match.group(2)
        if tag in _SINGLETON_TAGS and index is None:
            css.append(tag)
        else:
            css.append(f"{tag}:nth-of-type({index or 1})")
    return " > ".join(css) if css else BODY_LOCATOR


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def canonical_locator(node: DOMNode) -> str:
    """Pick the most stable locator for a node.

    Priority: data-testid, id, aria-label, name, type, class list, then the
    structural path. The first non-empty attribute wins.
    """
    if isinstance(node, TextNode):
        return to_locator(node.structural_path)

    attrs = node.attributes
    tag = node.tag
    if value := attrs.get("data-testid", "").strip():
        return f'[data-testid="{_quote(value)}"]'
    if value := attrs.get("id", "").strip():
        if _CSS_IDENT_RE.match(value):
            return f"#{value}"
        return f'[id="{_quote(value)}"]'
    if value := attrs.get("aria-label", "").strip():
        return f'[aria-label="{_quote(value)}"]'
    if value := attrs.get("name", "").strip():
        return f'{tag}[name="{_quote(value)}"]'
    if value := attrs.get("type", "").strip():
        return f'{tag}[type="{_quote(value)}"]'
    classes = [c for c in attrs.get("class", "").split() if _CSS_IDENT_RE.match(c)]
    if classes:
        return "." + ".".join(classes)
    return to_locator(node.structural_path)


# ---------------------------------------------------------------------------
# Summary and lookups
# ---------------------------------------------------------------------------


def summarize(tree: DOMTree, max_elements: int = 300) -> str:
    """Render the tree as numbered, depth-indented lines for the oracle."""
    lines: list[str] = []
    for index, (_node_id, node, depth) in enumerate(tree.walk(), start=1):
        if index > max_elements:
            lines.append(f"... ({len(tree) - max_elements} more elements truncated)")
            break
        indent = "  " * depth
        if isinstance(node, TextNode):
            text = node.text if len(node.text) <= 120 else node.text[:117] + "..."
            line = f'{index}. {indent}TEXT: "{text}"'
        else:
            attrs = "".join(
                f' {name}="{node.attributes[name]}"' for name in SUMMARY_ATTRIBUTES if node.attributes.get(name)
            )
            line = f"{index}. {indent}<{node.tag}{attrs}>"
        line += f" | PATH: {node.structural_path} | SELECTOR: {canonical_locator(node)}"
        lines.append(line)
    return "\n".join(lines)


def find_by_path(tree: DOMTree, path: str) -> DOMNode | None:
    """First element whose structural path equals *path*."""
    text_match = None
    for _node_id, node, _depth in tree.walk():
        if node.structural_path != path:
            continue
        if isinstance(node, ElementNode):
            return node
        text_match = text_match or node
    return text_match


_ATTR_SELECTOR_RE = re.compile(r'^(?P<tag>[a-zA-Z][a-zA-Z0-9-]*)?\[(?P<name>[^=\]]+)="(?P<value>(?:[^"\\]|\\.)*)"\]$')


def find_by_locator(tree: DOMTree, locator: str) -> ElementNode | None:
    """Match simple locators: ``#id``, ``.class``, ``tag`` and ``tag[attr="v"]``."""
    locator = locator.strip()
    attr_match = _ATTR_SELECTOR_RE.match(locator)
    for _node_id, node, _depth in tree.walk():
        if not isinstance(node, ElementNode):
            continue
        attrs = node.attributes
        if attr_match:
            tag = attr_match.group("tag")
            value = attr_match.group("value").replace('\\"', '"').replace("\\\\", "\\")
            if (not tag or tag.lower() == node.tag) and attrs.get(attr_match.group("name")) == value:
                return node
        elif locator.startswith("#"):
            if attrs.get("id") == locator[1:]:
                return node
        elif locator.startswith("."):
            wanted = [c for c in locator[1:].split(".") if c]
            classes = attrs.get("class", "").split()
            if wanted and all(c in classes for c in wanted):
                return node
        elif locator.lower() == node.tag:
            return node
    return None
