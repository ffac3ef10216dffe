"""
Canvas editor support.

The project content blob belongs to the browser editor; nothing here reads
it. This module only knows the empty document new projects start with,
the palette of elements the editor can drop onto the canvas, and how to
turn a project into a React component stub for export.
"""

import copy
import html
import json
import re

from .errors import ValidationError

DEFAULT_CONTENT = json.dumps(
    {
        "nodes": {},
        "root": {
            "type": "div",
            "isCanvas": True,
            "props": {"className": "h-full w-full p-4"},
            "nodes": [],
        },
    },
    separators=(",", ":"),
)

PALETTE = {
    "text": {
        "label": "Text",
        "is_canvas": False,
        "props": {"text": "Edit this text", "tag": "p"},
        "style": {"fontSize": "16px", "color": "#111827", "textAlign": "left"},
    },
    "button": {
        "label": "Button",
        "is_canvas": False,
        "props": {"text": "Click me", "href": "", "variant": "primary"},
        "style": {"padding": "8px 16px", "borderRadius": "6px", "backgroundColor": "#2563eb", "color": "#ffffff"},
    },
    "image": {
        "label": "Image",
        "is_canvas": False,
        "props": {"src": "", "alt": "Image"},
        "style": {"width": "100%", "height": "auto", "objectFit": "cover"},
    },
    "container": {
        "label": "Container",
        "is_canvas": True,
        "props": {"className": "flex flex-col gap-2"},
        "style": {"padding": "16px", "backgroundColor": "transparent", "minHeight": "80px"},
    },
    "card": {
        "label": "Card",
        "is_canvas": True,
        "props": {"title": "Card title"},
        "style": {"padding": "16px", "borderRadius": "8px", "backgroundColor": "#ffffff", "boxShadow": "0 1px 3px rgba(0,0,0,0.1)"},
    },
}


def palette_item(element_type: str) -> dict:
    """Fresh copy of one palette entry, tagged with its type."""
    try:
        entry = PALETTE[element_type]
    except KeyError:
        raise ValidationError(
            f"Unknown element type '{element_type}'; expected one of: {', '.join(PALETTE)}"
        ) from None
    item = copy.deepcopy(entry)
    item["type"] = element_type
    return item


def component_name(project_name: str) -> str:
    words = re.findall(r"[A-Za-z0-9]+", project_name or "")
    name = "".join(w[:1].upper() + w[1:] for w in words) or "Page"
    if name[0].isdigit():
        name = "Page" + name
    return name


def _jsx_text(value: str) -> str:
    # Braces would open a JSX expression
    return html.escape(value).replace("{", "&#123;").replace("}", "&#125;")


def export_project_source(project) -> str:
    """React component source for a project (name heading + description)."""
    return "\n".join([
        "import React from 'react';",
        "",
        f"export default function {component_name(project.name)}() {{",
        "  return (",
        '    <div className="container mx-auto py-8">',
        f'      <h1 className="text-2xl font-bold">{_jsx_text(project.name)}</h1>',
        f"      <p>{_jsx_text(project.description or '')}</p>",
        "      {/* Generated content would be inserted here */}",
        "    </div>",
        "  );",
        "}",
    ])
