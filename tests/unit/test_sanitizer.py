"""
Unit tests for the allow-list HTML sanitizer
"""
import pytest
from bs4 import BeautifulSoup

from core.sanitizer import (
    BIO_ALLOW_LIST,
    TEXT_ONLY,
    AllowList,
    is_url_allowed,
    sanitize_html,
    url_scheme,
)


def _first(html, tag):
    return BeautifulSoup(html, "html.parser").find(tag)


class TestTextOnly:
    """Test the text-only allow-list"""

    def test_strips_tags_keeps_text(self):
        assert sanitize_html("<p>hi <b>there</b></p>", TEXT_ONLY) == "hi there"

    def test_drops_script_content(self):
        assert sanitize_html("<script>alert(1)</script>ok", TEXT_ONLY) == "ok"

    @pytest.mark.parametrize("tag", ["style", "textarea", "noscript", "iframe", "option"])
    def test_drops_content_of_dangerous_tags(self, tag):
        assert sanitize_html(f"a<{tag}>hidden</{tag}>b", TEXT_ONLY) == "ab"

    def test_drops_comments(self):
        assert sanitize_html("a<!-- secret -->b", TEXT_ONLY) == "ab"

    def test_text_stays_escaped(self):
        assert sanitize_html("a &amp; b", TEXT_ONLY) == "a &amp; b"

    def test_empty(self):
        assert sanitize_html("", TEXT_ONLY) == ""


class TestBioAllowList:
    """Test the final bio allow-list"""

    def test_keeps_allowed_link(self):
        html = sanitize_html(
            '<a href="https://example.com" title="t" rel="nofollow">x</a>',
            BIO_ALLOW_LIST,
        )
        link = _first(html, "a")
        assert link["href"] == "https://example.com"
        assert link["title"] == "t"
        assert link.get_text() == "x"

    def test_strips_event_handlers(self):
        html = sanitize_html('<a href="/x" onclick="evil()">x</a>', BIO_ALLOW_LIST)
        assert "onclick" not in html
        assert _first(html, "a")["href"] == "/x"

    @pytest.mark.parametrize(
        "href",
        [
            "javascript:alert(1)",
            "JavaScript:alert(1)",
            "java&#9;script:alert(1)",
            " javascript:alert(1)",
            "vbscript:msgbox(1)",
            "data:text/html;base64,PHNjcmlwdD4=",
        ],
    )
    def test_removes_unsafe_urls(self, href):
        html = sanitize_html(f'<a href="{href}">x</a>', BIO_ALLOW_LIST)
        assert _first(html, "a").get("href") is None

    @pytest.mark.parametrize(
        "href", ["https://a.b", "http://a.b", "mailto:me@a.b", "ftp://a.b", "tel:+1", "/rel"]
    )
    def test_keeps_safe_urls(self, href):
        html = sanitize_html(f'<a href="{href}">x</a>', BIO_ALLOW_LIST)
        assert _first(html, "a")["href"] == href

    def test_unwraps_unknown_tags(self):
        assert sanitize_html("<marquee>hi</marquee>", BIO_ALLOW_LIST) == "hi"

    def test_drops_script_even_inside_allowed_tags(self):
        html = sanitize_html("<p>a<script>alert(1)</script>b</p>", BIO_ALLOW_LIST)
        assert html == "<p>ab</p>"

    def test_image_attributes(self):
        html = sanitize_html(
            '<img src="https://a.b/me.png" alt="me" class="profile" onerror="x()">',
            BIO_ALLOW_LIST,
        )
        img = _first(html, "img")
        assert img["src"] == "https://a.b/me.png"
        assert img["alt"] == "me"
        assert img["class"] == ["profile"]
        assert img.get("onerror") is None

    def test_image_with_data_url_loses_src(self):
        html = sanitize_html('<img src="data:image/png;base64,AAAA">', BIO_ALLOW_LIST)
        assert _first(html, "img").get("src") is None

    def test_class_only_where_allowed(self):
        html = sanitize_html('<p class="x"><code class="lang">y</code></p>', BIO_ALLOW_LIST)
        assert _first(html, "p").get("class") is None
        assert _first(html, "code")["class"] == ["lang"]

    def test_table_cell_attributes(self):
        html = sanitize_html(
            '<table><tr><td colspan="2" style="color:red">x</td></tr></table>',
            BIO_ALLOW_LIST,
        )
        cell = _first(html, "td")
        assert cell["colspan"] == "2"
        assert cell.get("style") is None


class TestUrlHelpers:
    def test_scheme_is_normalised(self):
        assert url_scheme(" JaVa\nScript:alert(1)") == "javascript"

    def test_relative_url_has_no_scheme(self):
        assert url_scheme("/profile") is None

    def test_relative_urls_can_be_disallowed(self):
        strict = AllowList(schemes=frozenset({"https"}), allow_relative_urls=False)
        assert is_url_allowed("/x", strict) is False
        assert is_url_allowed("https://x", strict) is True
