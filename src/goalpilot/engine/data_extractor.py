"""GoalPilot Data Extractor: rule-based structured reads from the page.

A rule names an output key, a CSS selector, an optional attribute to read
instead of the text, and whether every match or only the first is read.
All rules run in one ``page.evaluate`` round trip. A rule whose selector
matches nothing yields None (or an empty list when ``multiple``); a rule
whose selector is invalid yields the same instead of failing the batch.

Presets bundle rules for common page data, forms, tables and social tags.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger("goalpilot.engine.data_extractor")

PRESETS = ("common", "form", "table", "social")

MAX_VALUE_CHARS = 2000
MAX_ITEMS_PER_RULE = 200

_RULES_SCRIPT = """
({rules}) => {
  const read = (el, attribute) => {
    const value = attribute ? el.getAttribute(attribute) : el.textContent;
    if (value === null || value === undefined) return null;
    return value.trim() || null;
  };
  const out = {};
  for (const rule of rules) {
    try {
      if (rule.multiple) {
        out[rule.key] = Array.from(document.querySelectorAll(rule.selector))
          .map(el => read(el, rule.attribute));
      } else {
        const el = document.querySelector(rule.selector);
        out[rule.key] = el ? read(el, rule.attribute) : null;
      }
    } catch (e) {
      out[rule.key] = rule.multiple ? [] : null;
    }
  }
  return out;
}
"""

_TABLE_SCRIPT = """
({table: selector}) => {
  const table = document.querySelector(selector);
  if (!table) return null;
  const headers = Array.from(table.querySelectorAll('th')).map(th => (th.textContent || '').trim());
  const rows = Array.from(table.querySelectorAll('tr')).slice(headers.length > 0 ? 1 : 0);
  const data = rows.map(row => {
    const cells = Array.from(row.querySelectorAll('td, th')).map(c => (c.textContent || '').trim());
    if (headers.length > 0 && headers.length === cells.length) {
      const record = {};
      headers.forEach((header, i) => { record[header] = cells[i]; });
      return record;
    }
    return cells;
  });
  return {headers, data, rowCount: rows.length, columnCount: headers.length};
}
"""


@dataclasses.dataclass(frozen=True)
class ExtractionRule:
    """What to read from the page and under which key to report it."""

    key: str
    selector: str
    attribute: str | None = None
    multiple: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> ExtractionRule:
        """Build a rule from an untrusted mapping. Raises ValueError."""
        if not isinstance(data, dict):
            raise ValueError(f"Extraction rule must be an object, got {type(data).__name__}")
        key = data.get("key")
        selector = data.get("selector")
        if not isinstance(key, str) or not key.strip():
            raise ValueError("Extraction rule requires a non-empty 'key'")
        if not isinstance(selector, str) or not selector.strip():
            raise ValueError(f"Extraction rule '{key}' requires a non-empty 'selector'")
        attribute = data.get("attribute")
        if attribute is not None and (not isinstance(attribute, str) or not attribute.strip()):
            raise ValueError(f"Extraction rule '{key}': 'attribute' must be a non-empty string")
        multiple = data.get("multiple", False)
        if not isinstance(multiple, bool):
            raise ValueError(f"Extraction rule '{key}': 'multiple' must be a boolean")
        return cls(
            key=key.strip(),
            selector=selector.strip(),
            attribute=attribute.strip() if attribute else None,
            multiple=multiple,
        )

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


def common_rules() -> list[ExtractionRule]:
    return [
        ExtractionRule("title", "title"),
        ExtractionRule("h1", "h1"),
        ExtractionRule("headings", "h1, h2, h3, h4, h5, h6", multiple=True),
        ExtractionRule("links", "a[href]", attribute="href", multiple=True),
        ExtractionRule("images", "img[src]", attribute="src", multiple=True),
        ExtractionRule("metaDescription", 'meta[name="description"]', attribute="content"),
        ExtractionRule("metaKeywords", 'meta[name="keywords"]', attribute="content"),
        ExtractionRule("paragraphs", "p", multiple=True),
    ]


def form_rules(form_selector: str = "form") -> list[ExtractionRule]:
    f = form_selector
    return [
        ExtractionRule("formAction", f, attribute="action"),
        ExtractionRule("formMethod", f, attribute="method"),
        ExtractionRule("inputFields", f"{f} input", attribute="name", multiple=True),
        ExtractionRule("inputTypes", f"{f} input", attribute="type", multiple=True),
        ExtractionRule("textareas", f"{f} textarea", attribute="name", multiple=True),
        ExtractionRule("selectFields", f"{f} select", attribute="name", multiple=True),
        ExtractionRule("labels", f"{f} label", multiple=True),
        ExtractionRule("buttons", f'{f} button, {f} input[type="submit"]', multiple=True),
    ]


def table_rules(table_selector: str = "table") -> list[ExtractionRule]:
    t = table_selector
    return [
        ExtractionRule("headers", f"{t} th", multiple=True),
        ExtractionRule("rows", f"{t} tr", multiple=True),
        ExtractionRule("cells", f"{t} td", multiple=True),
    ]


def social_rules() -> list[ExtractionRule]:
    return [
        ExtractionRule("ogTitle", 'meta[property="og:title"]', attribute="content"),
        ExtractionRule("ogDescription", 'meta[property="og:description"]', attribute="content"),
        ExtractionRule("ogImage", 'meta[property="og:image"]', attribute="content"),
        ExtractionRule("ogUrl", 'meta[property="og:url"]', attribute="content"),
        ExtractionRule("twitterTitle", 'meta[name="twitter:title"]', attribute="content"),
        ExtractionRule("twitterDescription", 'meta[name="twitter:description"]', attribute="content"),
        ExtractionRule("twitterImage", 'meta[name="twitter:image"]', attribute="content"),
        ExtractionRule("twitterCard", 'meta[name="twitter:card"]', attribute="content"),
    ]


def _clip(value: Any) -> Any:
    if isinstance(value, str):
        return value[:MAX_VALUE_CHARS]
    if isinstance(value, list):
        return [_clip(v) for v in value[:MAX_ITEMS_PER_RULE]]
    return value


class DataExtractor:
    """Runs extraction rules against one Playwright page."""

    def __init__(self, page: Page) -> None:
        self._page = page

    async def extract_data(self, rules: Sequence[ExtractionRule], include_metadata: bool = True) -> dict[str, Any]:
        """Evaluate *rules* and return ``{"data": {...}, "metadata": {...}}``.

        Keys missing from the page's answer come back as None (or [] for
        ``multiple`` rules). Values are clipped to bounded sizes.
        """
        raw = await self._page.evaluate(_RULES_SCRIPT, {"rules": [rule.to_dict() for rule in rules]})
        if not isinstance(raw, dict):
            raw = {}
        data: dict[str, Any] = {}
        for rule in rules:
            value = raw.get(rule.key)
            if value is None and rule.multiple:
                value = []
            data[rule.key] = _clip(value)
        found = sum(1 for value in data.values() if value not in (None, []))
        logger.debug("Extracted %d/%d rules from %s", found, len(rules), self._page.url)

        extracted: dict[str, Any] = {"data": data}
        if include_metadata:
            extracted["metadata"] = await self._metadata(rules)
        return extracted

    async def extract_common(self) -> dict[str, Any]:
        return await self.extract_data(common_rules())

    async def extract_form(self, form_selector: str = "form") -> dict[str, Any]:
        return await self.extract_data(form_rules(form_selector))

    async def extract_social(self) -> dict[str, Any]:
        return await self.extract_data(social_rules())

    async def extract_table(self, table_selector: str = "table") -> dict[str, Any]:
        """Table rules plus a structured view keyed by header when rows line up."""
        extracted = await self.extract_data(table_rules(table_selector))
        try:
            structured = await self._page.evaluate(_TABLE_SCRIPT, {"table": table_selector})
        except Exception as exc:
            logger.warning("Could not read structured table %s: %s", table_selector, exc)
            structured = None
        if isinstance(structured, dict) and isinstance(structured.get("data"), list):
            structured["data"] = structured["data"][:MAX_ITEMS_PER_RULE]
        extracted["table"] = structured
        return extracted

    async def extract_preset(self, preset: str, selector: str | None = None) -> dict[str, Any]:
        """Run a named preset. *selector* scopes the form and table presets."""
        if preset == "common":
            return await self.extract_common()
        if preset == "form":
            return await self.extract_form(selector or "form")
        if preset == "table":
            return await self.extract_table(selector or "table")
        if preset == "social":
            return await self.extract_social()
        raise ValueError(f"Unknown extraction preset {preset!r}; expected one of {', '.join(PRESETS)}")

    async def _metadata(self, rules: Sequence[ExtractionRule]) -> dict[str, Any]:
        return {
            "url": self._page.url,
            "title": await self._page.title(),
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds"),
            "rules": [rule.to_dict() for rule in rules],
        }
