"""
Self-contained HTML for the document tab.

The page is rendered through ``streamlit.components.v1.html``. Its script
centres the current match inside the scroll container, tracks which topic
header is in view, and forwards the search shortcuts (Ctrl/Cmd+F, Escape,
Enter, Shift+Enter) to the Streamlit search bar in the parent page.
"""

from __future__ import annotations

import html
import json
from dataclasses import dataclass

from services.document_search import Highlight, Segment

DOCUMENT_VIEW_HEIGHT = 640
SCROLL_START_PADDING = 20
TOPIC_HEADER_THRESHOLD = 1 / 3

SEARCH_INPUT_LABEL = "Search document"
SEARCH_OPEN_LABEL = "🔍 Search"
SEARCH_PREV_LABEL = "↑"
SEARCH_NEXT_LABEL = "↓"
SEARCH_CLOSE_LABEL = "✕"

HIGHLIGHT_STYLE = "background:#fde68a;border-radius:2px"
CURRENT_HIGHLIGHT_STYLE = "background:#f97316;color:white;border-radius:2px"


@dataclass(frozen=True)
class DocumentSection:
    anchor: str
    body: list[Segment]
    heading: list[Segment] | None = None
    title: str = ""
    icon: str = ""


def highlighted_html(segments: list[Segment]) -> str:
    parts: list[str] = []
    for seg in segments:
        if isinstance(seg, Highlight):
            style = CURRENT_HIGHLIGHT_STYLE if seg.current else HIGHLIGHT_STYLE
            parts.append(f"<mark id='match-{seg.index}' style='{style}'>{html.escape(seg.text)}</mark>")
        else:
            parts.append(html.escape(seg))
    return "".join(parts).replace("\n", "<br>")


def _section_html(section: DocumentSection) -> str:
    body = f"<div class='body'>{highlighted_html(section.body)}</div>"
    if section.heading is None:
        return f"<section id='{html.escape(section.anchor, quote=True)}'>{body}</section>"
    icon = f"{html.escape(section.icon)} " if section.icon else ""
    return (
        f"<section id='{html.escape(section.anchor, quote=True)}'>"
        f"<h4 data-topic data-title='{html.escape(section.title, quote=True)}'>"
        f"{icon}{highlighted_html(section.heading)}</h4>{body}</section>"
    )


def build_document_html(
    sections: list[DocumentSection],
    current_index: int | None = None,
    *,
    active_query: str = "",
    total: int = 0,
    focus_search: bool = False,
    height: int = DOCUMENT_VIEW_HEIGHT,
) -> str:
    """Build the document page; *current_index* is the match to centre, or None."""
    config = {
        "current": current_index if total else None,
        "activeQuery": active_query,
        "total": total,
        "focusSearch": focus_search,
        "startPadding": SCROLL_START_PADDING,
        "headerThreshold": TOPIC_HEADER_THRESHOLD,
        "inputLabel": SEARCH_INPUT_LABEL,
        "openLabel": SEARCH_OPEN_LABEL,
        "prevLabel": SEARCH_PREV_LABEL,
        "nextLabel": SEARCH_NEXT_LABEL,
        "closeLabel": SEARCH_CLOSE_LABEL,
    }
    # "</" would end the script element early.
    config_json = json.dumps(config, ensure_ascii=False).replace("</", "<\\/")
    body = "".join(_section_html(s) for s in sections)
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8"/>
<style>
  * {{ box-sizing: border-box; }}
  body {{ margin: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; color: #1f2937; }}
  #active-topic {{ height: 28px; padding: 4px 8px; font-size: 12px; color: #6b7280; border-bottom: 1px solid #e5e7eb; }}
  #doc {{ height: {int(height) - 30}px; overflow-y: auto; padding: 0 12px 24px; line-height: 1.6; }}
  h4 {{ margin: 18px 0 6px; }}
</style>
</head>
<body>
<div id="active-topic"></div>
<div id="doc">{body}</div>
<script>
const CONFIG = {config_json};
const doc = document.getElementById("doc");
const topicLabel = document.getElementById("active-topic");
const headers = Array.from(doc.querySelectorAll("h4[data-topic]"));

function scrollTarget(containerRect, elementRect, scrollTop, block) {{
  const offset = elementRect.top - containerRect.top;
  if (block === "center") {{
    return scrollTop + offset - containerRect.height / 2 + elementRect.height / 2;
  }}
  return scrollTop + offset - CONFIG.startPadding;
}}

function activeTopicIndex() {{
  const box = doc.getBoundingClientRect();
  let current = 0;
  headers.forEach((h, i) => {{
    if (h.getBoundingClientRect().top - box.top < box.height * CONFIG.headerThreshold) current = i;
  }});
  return current;
}}

function updateTopic() {{
  if (headers.length) topicLabel.textContent = headers[activeTopicIndex()].dataset.title;
}}

doc.addEventListener("scroll", updateTopic);
if (CONFIG.current !== null) {{
  const match = document.getElementById("match-" + CONFIG.current);
  if (match) {{
    doc.scrollTop = scrollTarget(doc.getBoundingClientRect(), match.getBoundingClientRect(), doc.scrollTop, "center");
  }}
}}
updateTopic();

let host = null;
try {{ host = window.parent.document; }} catch (e) {{ host = null; }}

function searchInput() {{
  return host ? host.querySelector('input[aria-label="' + CONFIG.inputLabel + '"]') : null;
}}

function press(label) {{
  if (!host) return;
  const button = Array.from(host.querySelectorAll("button")).find((b) => b.innerText.trim() === label);
  if (button && !button.disabled) button.click();
}}

function onKey(e) {{
  if ((e.ctrlKey || e.metaKey) && e.key.toLowerCase() === "f") {{
    e.preventDefault();
    const box = searchInput();
    if (box) box.focus(); else press(CONFIG.openLabel);
    return;
  }}
  const box = searchInput();
  if (!box) return;
  if (e.key === "Escape") {{
    e.preventDefault();
    press(CONFIG.closeLabel);
    return;
  }}
  if (e.key === "Enter" && e.target === box && box.value === CONFIG.activeQuery && CONFIG.total > 0) {{
    e.preventDefault();
    e.stopPropagation();
    press(e.shiftKey ? CONFIG.prevLabel : CONFIG.nextLabel);
  }}
}}

document.addEventListener("keydown", onKey);
if (host) {{
  const win = window.parent;
  if (win.__studySearchKeys) host.removeEventListener("keydown", win.__studySearchKeys, true);
  win.__studySearchKeys = onKey;
  host.addEventListener("keydown", onKey, true);
  if (CONFIG.focusSearch) {{
    const box = searchInput();
    if (box) box.focus();
  }}
}}
</script>
</body>
</html>"""
