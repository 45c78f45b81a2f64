"""Tests for core.proxy.content_rewriter."""

from __future__ import annotations

import re
from urllib.parse import parse_qs, urlsplit

import pytest

from core.proxy.content_rewriter import ContentRewriter, build_intercept_script, split_srcset, transform_html
from tests.helpers import PROXY_BASE

RESOURCE = f"{PROXY_BASE}/api/resource?url="
BASE = "https://example.com/dir/page.html"


def rewrite(content: str, base_url: str = BASE) -> str:
    return transform_html(content, base_url, PROXY_BASE)


def proxied_target(rewritten: str) -> str:
    return parse_qs(urlsplit(rewritten).query)["url"][0]


class TestRewriteHtml:
    def test_basic_page(self):
        html = '<html><head></head><body><img src="/a.png"></body></html>'
        result = transform_html(html, "https://example.com/", PROXY_BASE)

        assert result.startswith('<html><head>\n<base href="https://example.com/">\n<script>')
        assert result.endswith(
            '</script>\n</head><body>'
            '<img src="http://proxy.test/api/resource?url=https%3A%2F%2Fexample.com%2Fa.png">'
            '</body></html>'
        )

    def test_injection_without_head_is_prepended(self):
        result = rewrite("<p>hi</p>")
        assert result.startswith(f'<base href="{BASE}">\n<script>')
        assert result.endswith("</script>\n<p>hi</p>")

    def test_injection_after_head_with_attributes(self):
        result = rewrite('<HTML><HEAD lang="en"><title>t</title></HEAD></HTML>')
        assert '<HEAD lang="en">\n<base href=' in result
        assert result.index("<base href=") < result.index("<title>")

    def test_base_href_is_escaped(self):
        result = rewrite("<head></head>", "https://example.com/?a=1&b=2")
        assert '<base href="https://example.com/?a=1&amp;b=2">' in result

    def test_relative_resolved_against_document_url(self):
        result = rewrite('<img src="img/x.png">')
        assert f'src="{RESOURCE}https%3A%2F%2Fexample.com%2Fdir%2Fimg%2Fx.png"' in result

    def test_protocol_relative_becomes_https(self):
        result = rewrite('<script src="//cdn.example.net/x.js"></script>')
        assert f'src="{RESOURCE}https%3A%2F%2Fcdn.example.net%2Fx.js"' in result

    @pytest.mark.parametrize(
        "tag",
        [
            '<a href="#top">top</a>',
            '<a href="javascript:void(0)">x</a>',
            '<img src="data:image/png;base64,AAAA">',
            '<a href="mailto:me@example.com">mail</a>',
            '<a href="tel:+15550100">call</a>',
            '<a href="http://[bad">broken</a>',
        ],
    )
    def test_unproxyable_values_untouched(self, tag):
        assert tag in rewrite(f"<body>{tag}</body>")

    def test_absolute_url_round_trips_through_query(self):
        result = rewrite('<a href="https://other.org/p?a=1&amp;b=2">x</a>')
        href = re.search(r'<a href="([^"]+)"', result).group(1)

        assert href.startswith(RESOURCE)
        assert proxied_target(href) == "https://other.org/p?a=1&b=2"

    def test_single_quotes_preserved(self):
        result = rewrite("<img src='/x.png'>")
        assert f"<img src='{RESOURCE}https%3A%2F%2Fexample.com%2Fx.png'>" in result

    def test_unquoted_value_gets_quoted(self):
        result = rewrite("<img src=/y.png alt=y>")
        assert f'<img src="{RESOURCE}https%3A%2F%2Fexample.com%2Fy.png" alt=y>' in result

    def test_link_and_form_action(self):
        result = rewrite(
            '<link rel="stylesheet" href="/s.css"><form action="/submit" method="post"></form>'
        )
        assert f'href="{RESOURCE}https%3A%2F%2Fexample.com%2Fs.css"' in result
        assert f'action="{RESOURCE}https%3A%2F%2Fexample.com%2Fsubmit"' in result

    def test_data_src_not_treated_as_src(self):
        result = rewrite('<img data-src="/lazy.png">')
        assert '<img data-src="/lazy.png">' in result

    def test_srcset_candidates(self):
        result = rewrite('<img srcset="/a.png 1x, /b.png 2x">')
        assert (
            f'srcset="{RESOURCE}https%3A%2F%2Fexample.com%2Fa.png 1x, '
            f'{RESOURCE}https%3A%2F%2Fexample.com%2Fb.png 2x"'
        ) in result

    def test_style_block_url(self):
        result = rewrite("<style>body { background: url('/bg.png') }</style>")
        assert f"url('{RESOURCE}https%3A%2F%2Fexample.com%2Fbg.png')" in result

    def test_style_attribute_url_keeps_attribute_valid(self):
        result = rewrite('<div style="background: url(/bg.png)"></div>')
        assert f'<div style="background: url({RESOURCE}https%3A%2F%2Fexample.com%2Fbg.png)"></div>' in result

    def test_parentheses_and_quotes_are_encoded(self):
        result = rewrite('<img src="/a(1).png">')
        assert f'src="{RESOURCE}https%3A%2F%2Fexample.com%2Fa%281%29.png"' in result

    def test_script_new_url_untouched(self):
        script = "<script>var u = new URL('/api', location.href);</script>"
        assert script in rewrite(script)

    def test_already_proxied_not_rewritten_again(self):
        tag = f'<img src="{RESOURCE}https%3A%2F%2Fexample.com%2Fa.png">'
        result = rewrite(tag)

        assert tag in result
        assert "url=http%3A%2F%2Fproxy.test" not in result

    def test_final_url_is_rewrite_base_despite_document_base(self):
        html = '<head><base href="/sub/"></head><body><img src="a.png"></body>'
        result = transform_html(html, "https://example.com/x/page", PROXY_BASE)

        assert f'src="{RESOURCE}https%3A%2F%2Fexample.com%2Fx%2Fa.png"' in result
        assert "example.com%2Fsub%2Fa.png" not in result
        assert result.startswith('<head>\n<base href="https://example.com/x/page">\n<script>')
        # исходный <base> не проксируется
        assert '<base href="/sub/"></head>' in result

    def test_double_quoted_value_with_apostrophe(self):
        result = rewrite('<a href="/it\'s.html">x</a>')
        assert f'<a href="{RESOURCE}https%3A%2F%2Fexample.com%2Fit%27s.html">' in result

    def test_single_quoted_value_with_double_quote(self):
        result = rewrite("<a href='/say\"hi\".html'>x</a>")
        assert f"<a href='{RESOURCE}https%3A%2F%2Fexample.com%2Fsay%22hi%22.html'>" in result

    def test_srcset_data_uri_untouched(self):
        tag = '<img srcset="data:image/png;base64,AAAA 1x">'
        assert tag in rewrite(tag)

    def test_srcset_data_uri_mixed_with_url(self):
        result = rewrite('<img srcset="data:image/png;base64,AAAA 1x, /b.png 2x">')
        assert (
            f'srcset="data:image/png;base64,AAAA 1x, {RESOURCE}https%3A%2F%2Fexample.com%2Fb.png 2x"'
        ) in result


class TestRewriteCss:
    def test_import_relative_to_stylesheet(self):
        rewriter = ContentRewriter("https://example.com/style.css", PROXY_BASE)
        assert rewriter.rewrite_css('@import "./b.css";') == (
            f'@import "{RESOURCE}https%3A%2F%2Fexample.com%2Fb.css";'
        )

    def test_url_forms(self):
        rewriter = ContentRewriter("https://example.com/css/site.css", PROXY_BASE)
        css = 'a{background:url(../i/a.png)} b{background:url("b.png")} @font-face{src:url( \'f.woff2\' )}'
        result = rewriter.rewrite_css(css)

        assert f"url({RESOURCE}https%3A%2F%2Fexample.com%2Fi%2Fa.png)" in result
        assert f'url("{RESOURCE}https%3A%2F%2Fexample.com%2Fcss%2Fb.png")' in result
        assert f"url('{RESOURCE}https%3A%2F%2Fexample.com%2Fcss%2Ff.woff2')" in result

    def test_import_url_function(self):
        rewriter = ContentRewriter("https://example.com/style.css", PROXY_BASE)
        result = rewriter.rewrite_css('@import url("print.css") print;')
        assert result == f'@import url("{RESOURCE}https%3A%2F%2Fexample.com%2Fprint.css") print;'

    def test_data_uri_untouched(self):
        rewriter = ContentRewriter("https://example.com/style.css", PROXY_BASE)
        css = "i{background:url(data:image/svg+xml;base64,AAAA)}"
        assert rewriter.rewrite_css(css) == css


class TestInterceptScript:
    def test_constants_and_patched_apis(self):
        script = build_intercept_script("https://example.com/", PROXY_BASE)

        assert script.startswith("<script>")
        assert script.endswith("</script>")
        assert 'var PROXY_BASE = "http://proxy.test";' in script
        assert 'var BASE_URL = "https://example.com/";' in script
        assert '"/api/resource"' in script
        for api in ("window.fetch", "XMLHttpRequest.prototype.open", "Element.prototype.setAttribute"):
            assert api in script

    def test_closing_tag_in_base_url_escaped(self):
        script = build_intercept_script('https://example.com/</script><script>alert(1)//', PROXY_BASE)
        assert script.count("</script>") == 1

    def test_trailing_slash_on_proxy_base_ignored(self):
        rewriter = ContentRewriter(BASE, PROXY_BASE + "/")
        assert rewriter.resource_prefix == RESOURCE


class TestResolveUrl:
    @pytest.fixture
    def rewriter(self):
        return ContentRewriter(BASE, PROXY_BASE)

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("/a", "https://example.com/a"),
            ("b", "https://example.com/dir/b"),
            ("  c.png  ", "https://example.com/dir/c.png"),
            ("//cdn.example.net/x", "https://cdn.example.net/x"),
            ("http://other.org/", "http://other.org/"),
        ],
    )
    def test_resolves(self, rewriter, value, expected):
        assert rewriter.resolve_url(value) == expected

    @pytest.mark.parametrize(
        "value",
        ["", "#x", "JavaScript:alert(1)", "blob:https://example.com/1", "ftp://example.com/f", "http://[bad", "//"],
    )
    def test_unresolvable(self, rewriter, value):
        assert rewriter.resolve_url(value) is None


class TestSplitSrcset:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("/a.png 1x, /b.png 2x", [("/a.png", "1x"), ("/b.png", "2x")]),
            ("/a.png, /b.png 480w", [("/a.png", ""), ("/b.png", "480w")]),
            ("data:image/png;base64,AAAA 1x", [("data:image/png;base64,AAAA", "1x")]),
            ("  /only.png  ", [("/only.png", "")]),
            ("", []),
        ],
    )
    def test_candidates(self, value, expected):
        assert split_srcset(value) == expected
