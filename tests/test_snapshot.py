import asyncio

from bs4 import BeautifulSoup

from fakes import FakeFetcher, response
from framesnap.config import ExportOptions
from framesnap.snapshot import STASH_ATTRIBUTE, transform_markup

APP = "https://app.scf.usercontent.goog"
BASE = f"{APP}/generative-ui-response/x/index.html"

PAGE = """<!DOCTYPE html>
<html><head>
<meta http-equiv="Content-Security-Policy" content="default-src 'self'">
<base href="https://elsewhere.example.com/">
<link rel="stylesheet" href="/css/app.css">
</head><body>
<a href="#top">top</a>
<a href="https://ext.example.com/page" target="_blank" rel="noopener">ext</a>
<button onclick="go()">b</button>
<div onclick="x()" onmouseover="y()" tabindex="0">d</div>
<input type="text">
<form action="/submit" method="post"></form>
<script>window.secret = 1;</script>
<script src="/a.js"></script>
</body></html>"""

APP_CSS = "@import 'theme.css';\nbody { background: url(img/bg.png); }"
THEME_CSS = ".t { background: url('../img/t.png'); }"


def run_transform(markup, fetcher, options=None):
    return asyncio.run(transform_markup(markup, BASE, options or ExportOptions(), fetcher))


def stylesheet_fetcher(extra=None):
    responses = {
        f"{APP}/css/app.css": response(APP_CSS, "text/css"),
        f"{APP}/css/theme.css": response(THEME_CSS, "text/css"),
    }
    responses.update(extra or {})
    return FakeFetcher(responses)


def test_removes_csp_and_base():
    result = run_transform(PAGE, stylesheet_fetcher())
    soup = BeautifulSoup(result.markup, "html.parser")
    assert soup.find("meta", attrs={"http-equiv": True}) is None
    assert soup.find("base") is None
    assert result.stats["cspRemoved"] == 1


def test_strips_scripts_and_inline_handlers():
    result = run_transform(PAGE, stylesheet_fetcher())
    soup = BeautifulSoup(result.markup, "html.parser")
    assert soup.find_all("script") == []
    handlers = [
        name for tag in soup.find_all(True) for name in tag.attrs if name.startswith("on")
    ]
    assert handlers == []


def test_three_handlers_and_two_scripts_all_removed():
    markup = (
        "<!DOCTYPE html><html><head><script src='/a.js'></script></head><body>"
        '<p onclick="a()">1</p><p onClick="b()">2</p><span onclick="c()">3</span>'
        "<script>init()</script></body></html>"
    )
    result = run_transform(markup, FakeFetcher())
    soup = BeautifulSoup(result.markup, "html.parser")
    assert soup.find_all("script") == []
    assert not any(
        name.lower().startswith("on") for tag in soup.find_all(True) for name in tag.attrs
    )


def test_keep_scripts_leaves_scripts_alone():
    options = ExportOptions.from_mapping({"keepScripts": True})
    result = run_transform(PAGE, stylesheet_fetcher(), options)
    soup = BeautifulSoup(result.markup, "html.parser")
    assert len(soup.find_all("script")) == 2
    assert soup.find("button").get("onclick") == "go()"


def test_freezes_navigation_but_keeps_hash_links():
    result = run_transform(PAGE, stylesheet_fetcher())
    soup = BeautifulSoup(result.markup, "html.parser")
    hash_link, external = soup.find_all("a")
    assert hash_link["href"] == "#top"
    assert external.get("href") is None
    assert external.get("target") is None
    assert external[STASH_ATTRIBUTE] == "https://ext.example.com/page"
    form = soup.find("form")
    assert form.get("action") is None and form.get("method") is None
    assert soup.find("input").has_attr("disabled")
    assert soup.find("button").has_attr("disabled")
    assert soup.find("div").get("tabindex") is None


def test_hash_links_frozen_when_requested():
    options = ExportOptions.from_mapping({"keepHashLinks": False})
    result = run_transform(PAGE, stylesheet_fetcher(), options)
    soup = BeautifulSoup(result.markup, "html.parser")
    assert soup.find("a")[STASH_ATTRIBUTE] == "#top"


def test_no_interaction_style_injected_once():
    fetcher = stylesheet_fetcher()
    first = run_transform(PAGE, fetcher)
    second = run_transform(first.markup, fetcher)
    soup = BeautifulSoup(second.markup, "html.parser")
    assert len(soup.find_all("style", attrs={"data-framesnap": "no-interactions"})) == 1


def test_stylesheet_imports_inlined_with_absolute_urls():
    fetcher = stylesheet_fetcher()
    result = run_transform(PAGE, fetcher)
    soup = BeautifulSoup(result.markup, "html.parser")
    assert soup.find("link") is None
    style = soup.find("style", attrs={"data-exported-from": f"{APP}/css/app.css"})
    css = style.string
    assert f"/* inlined @import {APP}/css/theme.css */" in css
    assert f'url("{APP}/img/t.png")' in css
    assert f'url("{APP}/css/img/bg.png")' in css
    assert "@import" not in css.replace("inlined @import", "")
    assert result.stats["stylesheetsInlined"] == 1


def test_import_media_list_wraps_in_media_block():
    fetcher = stylesheet_fetcher(
        {f"{APP}/css/app.css": response("@import url(print.css) print;", "text/css"),
         f"{APP}/css/print.css": response("p { color: black; }", "text/css")}
    )
    result = run_transform(PAGE, fetcher)
    assert "@media print {" in result.markup
    assert "p { color: black; }" in result.markup


def test_self_import_is_skipped():
    fetcher = FakeFetcher({f"{APP}/css/app.css": response("@import 'app.css';", "text/css")})
    result = run_transform(PAGE, fetcher)
    assert f"/* skipped circular @import: {APP}/css/app.css */" in result.markup
    assert fetcher.urls().count(f"{APP}/css/app.css") == 1


def test_two_hop_import_cycle_terminates():
    fetcher = FakeFetcher(
        {
            f"{APP}/css/app.css": response("@import 'b.css';", "text/css"),
            f"{APP}/css/b.css": response("@import 'app.css'; .b {}", "text/css"),
        }
    )
    result = run_transform(PAGE, fetcher)
    assert f"/* skipped circular @import: {APP}/css/app.css */" in result.markup
    assert ".b {}" in result.markup


def test_diamond_import_is_not_reported_as_cycle():
    fetcher = FakeFetcher(
        {
            f"{APP}/css/app.css": response("@import 'b.css'; @import 'c.css';", "text/css"),
            f"{APP}/css/b.css": response("@import 'd.css'; .b {}", "text/css"),
            f"{APP}/css/c.css": response("@import 'd.css'; .c {}", "text/css"),
            f"{APP}/css/d.css": response(".d { color: red; }", "text/css"),
        }
    )
    result = run_transform(PAGE, fetcher)
    assert "circular" not in result.markup
    assert result.markup.count(".d { color: red; }") == 2
    assert ".b {}" in result.markup and ".c {}" in result.markup


def test_import_depth_is_bounded():
    chain = {f"{APP}/css/app.css": response("@import 'c1.css';", "text/css")}
    for level in range(1, 9):
        chain[f"{APP}/css/c{level}.css"] = response(
            f"@import 'c{level + 1}.css'; .c{level} {{}}", "text/css"
        )
    fetcher = FakeFetcher(chain)
    run_transform(PAGE, fetcher)
    fetched = fetcher.urls()
    assert f"{APP}/css/c5.css" in fetched
    assert f"{APP}/css/c6.css" not in fetched


def test_failed_stylesheet_keeps_link_and_warns():
    result = run_transform(PAGE, FakeFetcher())
    soup = BeautifulSoup(result.markup, "html.parser")
    assert soup.find("link", rel="stylesheet") is not None
    assert any("Failed to fetch CSS" in warning for warning in result.warnings)
    assert result.stats["stylesheetsInlined"] == 0
