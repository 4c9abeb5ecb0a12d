from __future__ import annotations

import pytest

from gardengen.render import DEFAULT_TEMPLATE, page_href, render_template, root_for


def test_placeholders_inside_values_are_left_alone():
    page = render_template(
        DEFAULT_TEMPLATE,
        content="<p>Write {{left}} in your template</p>",
        left="LEFTNAV",
        right="{{content}}",
    )
    article = page.split('<article class="page-body">', 1)[1].split("</article>", 1)[0]
    assert article == "<p>Write {{left}} in your template</p>"
    assert page.count("LEFTNAV") == 1
    assert '<aside class="left sidebar">LEFTNAV</aside>' in page
    assert '<aside class="right sidebar">{{content}}</aside>' in page


def test_unknown_placeholders_are_kept():
    assert render_template("<b>{{title}}</b>{{nope}}", title="T") == "<b>T</b>{{nope}}"


@pytest.mark.parametrize("slug, root", [("index", "."), ("notes/a", ".."), ("tags/x/y", "../..")])
def test_root_for(slug, root):
    assert root_for(slug) == root


def test_page_href():
    assert page_href("..", "notes/a") == "../notes/a.html"
    assert page_href(".", "b", "sec") == "./b.html#sec"
