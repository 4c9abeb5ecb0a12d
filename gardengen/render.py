from __future__ import annotations

import re
from pathlib import Path

PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")

DEFAULT_TEMPLATE = """<!DOCTYPE html>
<html lang="{{lang}}">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{{title}}</title>
<meta name="description" content="{{description}}">
<link rel="stylesheet" href="{{root}}/index.css">
{{extra_head}}
</head>
<body data-slug="{{slug}}">
<div class="page">
<aside class="left sidebar">{{left}}</aside>
<main class="center">
<div class="page-header">{{before_body}}</div>
<article class="page-body">{{content}}</article>
</main>
<aside class="right sidebar">{{right}}</aside>
</div>
<footer class="footer">{{footer}}</footer>
</body>
</html>
"""

BASE_CSS = """body { margin: 0; font-family: system-ui, sans-serif; line-height: 1.6; color: #2b2b2b; }
a { color: #a67c52; }
a.internal.broken { color: #b8a89c; text-decoration: line-through; }
.page { display: grid; grid-template-columns: 16rem minmax(0, 1fr) 16rem; gap: 2rem; max-width: 80rem; margin: 0 auto; padding: 2rem; }
.sidebar { font-size: 0.9rem; }
.explorer ul { list-style: none; padding-left: 1rem; }
.explorer .folder > span { font-weight: 600; }
.breadcrumbs { font-size: 0.85rem; color: #7a6a5f; }
.content-meta { color: #7a6a5f; font-size: 0.9rem; }
.tags { list-style: none; padding: 0; display: flex; gap: 0.5rem; flex-wrap: wrap; }
.tags a { background: #eae3dc; border-radius: 999px; padding: 0 0.6rem; text-decoration: none; }
.toc ul { list-style: none; padding-left: 0.8rem; }
.page-listing li { margin-bottom: 0.4rem; }
.footer { text-align: center; font-size: 0.8rem; color: #7a6a5f; padding: 2rem; }
@media (max-width: 60rem) { .page { grid-template-columns: 1fr; } }
"""


def render_template(template: str, **context: str) -> str:
    """Fill ``{{key}}`` placeholders in one pass.

    Substituted values are never scanned again, so page text that happens to
    contain ``{{left}}`` comes out verbatim. Unknown placeholders are kept.
    """

    def repl(match: re.Match) -> str:
        return context.get(match.group(1), match.group(0))

    return PLACEHOLDER_RE.sub(repl, template)


def read_template(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def root_for(slug: str) -> str:
    """Relative prefix from the page at ``slug`` back to the site root."""
    depth = slug.count("/")
    if depth == 0:
        return "."
    return "/".join([".."] * depth)


def page_href(root: str, slug: str, anchor: str = "") -> str:
    href = f"{root}/{slug}.html"
    if anchor:
        href += f"#{anchor}"
    return href
