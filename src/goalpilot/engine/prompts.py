"""Prompt builders for planning, recovery and goal evaluation."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from goalpilot.engine.page_state import PageSnapshot
    from goalpilot.engine.tasks import Task

PLANNER_SYSTEM_PROMPT = """\
You control a web browser to accomplish a user's goal. Each turn you choose
exactly ONE next action and respond with a single JSON object, no prose.

AVAILABLE ACTIONS:
- navigate: open a URL. Fields: url
- click: click an element. Fields: selector (CSS selector or a PATH from the DOM list)
- clickByText: click the element whose visible text matches. Fields: clickText
- type: type text into an input. Fields: selector, text
- wait: pause or wait for an element. Fields: waitTime (ms) or selector
- extract: read text from the page. Fields: selector (optional)
  For structured data add ONE of:
    preset: "common" (title, headings, links, images, meta), "form" or "table"
      (selector scopes the form or table), or "social" (og: and twitter: tags)
    rules: [{"key": "price", "selector": ".price", "attribute": "href", "multiple": true}]
      (attribute and multiple are optional)
    attribute and/or multiple alongside selector, to read one attribute or every match
- screenshot: capture the page for the record
- custom: no browser effect; use when you need to look at the page again
- complete: the goal is already achieved and nothing more is needed

SELECTOR RULES:
- Prefer the SELECTOR shown next to an element in the DOM list.
- A PATH such as /html/body/div[2]/button is also accepted.
- Never use :contains() or other non-standard pseudo-selectors.
- For buttons and links with visible text, clickByText is usually most reliable.

RESPONSE FORMAT:
{
  "description": "short description of the action",
  "action": "navigate|click|clickByText|type|wait|extract|screenshot|custom|complete",
  "selector": "css selector if needed",
  "clickText": "visible text if clicking by text",
  "text": "text to type if typing",
  "url": "url if navigating",
  "waitTime": 1000,
  "reasoning": "why this action moves toward the goal"
}
"""

EVALUATOR_SYSTEM_PROMPT = """\
You judge whether a browser automation goal has been achieved. Be strict:
partial progress is not achievement. Respond with a single JSON object:
{"achieved": true or false, "confidence": number between 0 and 1, "reasoning": "short explanation"}
"""


def render_history(history: list[Task], window: int) -> str:
    """Number the most recent *window* tasks, keeping their global index."""
    if not history:
        return "(no actions taken yet)"
    start = max(0, len(history) - window)
    lines = []
    if start:
        lines.append(f"({start} earlier actions omitted)")
    for index, task in enumerate(history[start:], start=start + 1):
        lines.append(f"{index}. {task.history_line()}")
    return "\n".join(lines)


def render_page(page: PageSnapshot | None) -> str:
    if page is None:
        return "CURRENT PAGE: none yet (the browser has not loaded anything)."
    parts = [f"CURRENT PAGE: {page.url}", f"TITLE: {page.title}"]
    if page.extraction_error:
        parts.append(f"NOTE: the page could not be fully read ({page.extraction_error})")
    parts.append("DOM ELEMENTS:")
    parts.append(page.dom_summary or "(empty)")
    return "\n".join(parts)


def planning_prompt(instruction: str, history: list[Task], page: PageSnapshot | None, window: int) -> str:
    return (
        f"{PLANNER_SYSTEM_PROMPT}\n"
        f'GOAL: "{instruction}"\n\n'
        f"ACTION HISTORY:\n{render_history(history, window)}\n\n"
        f"{render_page(page)}\n\n"
        "What is the next action? Respond with JSON only."
    )


def recovery_prompt(
    instruction: str,
    history: list[Task],
    failed_task: Task,
    error: str,
    page: PageSnapshot | None,
    window: int,
) -> str:
    return (
        f"{PLANNER_SYSTEM_PROMPT}\n"
        f'GOAL: "{instruction}"\n\n'
        f"ACTION HISTORY:\n{render_history(history, window)}\n\n"
        f"THE LAST ACTION FAILED:\n  {failed_task.kind.value}: {failed_task.description}\n"
        f"  selector: {failed_task.selector or '-'}  clickText: {failed_task.click_text or '-'}\n"
        f"  error: {error}\n\n"
        f"{render_page(page)}\n\n"
        "Choose ONE different action that works around this failure. Respond with JSON only."
    )


def evaluation_prompt(instruction: str, completed: list[Task], failed: list[Task], page: PageSnapshot | None) -> str:
    completed_lines = "\n".join(f"{i}. {t.description}" for i, t in enumerate(completed, start=1)) or "(none)"
    text = f'{EVALUATOR_SYSTEM_PROMPT}\nGOAL: "{instruction}"\n\nCOMPLETED ACTIONS:\n{completed_lines}\n'
    if failed:
        failed_lines = "\n".join(f"{i}. {t.description}" for i, t in enumerate(failed, start=1))
        text += f"\nFAILED ACTIONS:\n{failed_lines}\n"
    return text + f"\n{render_page(page)}\n\nHas the goal been achieved? Respond with JSON only."
