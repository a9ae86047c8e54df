"""
Allow-list HTML sanitizer.

User bios are untrusted HTML. `sanitize_html` parses a fragment with
BeautifulSoup and rebuilds it keeping only what an `AllowList` names:

- comments, doctypes, CDATA and processing instructions are dropped;
- tags in `drop_content` are removed together with everything inside them;
- any other tag not in `tags` is unwrapped, keeping its text and children;
- attributes not listed for their tag are removed, and URL attributes whose
  scheme is not in `schemes` are removed.

Two allow-lists are used by the content pipeline: `TEXT_ONLY` strips every tag
before the Markdown pass, and `BIO_ALLOW_LIST` bounds the final rendered bio.
"""

import html
import re
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from bs4 import BeautifulSoup
from bs4.element import CData, Comment, Declaration, Doctype, ProcessingInstruction

URL_ATTRIBUTES = frozenset({"href", "src", "action", "cite", "longdesc"})

_SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.\-]*):")
# Browsers ignore these when resolving a scheme, e.g. "java\tscript:"
_URL_NOISE_RE = re.compile(r"[\x00-\x20\x7f]+")

DEFAULT_DROP_CONTENT = frozenset(
    {"script", "style", "textarea", "noscript", "iframe", "option"}
)


@dataclass(frozen=True)
class AllowList:
    """Tags, attributes and URL schemes that survive sanitization"""

    tags: FrozenSet[str] = frozenset()
    attributes: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    schemes: FrozenSet[str] = frozenset()
    allow_relative_urls: bool = True
    drop_content: FrozenSet[str] = DEFAULT_DROP_CONTENT

    def allows_attribute(self, tag: str, attribute: str) -> bool:
        return attribute in self.attributes.get(tag, frozenset())


TEXT_ONLY = AllowList()

BIO_ALLOW_LIST = AllowList(
    tags=frozenset(
        {
            "a", "abbr", "b", "blockquote", "br", "caption", "code", "col",
            "colgroup", "dd", "del", "div", "dl", "dt", "em", "figcaption",
            "figure", "h1", "h2", "h3", "h4", "h5", "h6", "hr", "i", "img",
            "kbd", "li", "ol", "p", "pre", "s", "section", "small", "span",
            "strong", "sub", "sup", "table", "tbody", "td", "tfoot", "th",
            "thead", "tr", "u", "ul",
        }
    ),
    attributes={
        "a": frozenset({"href", "name", "target", "title", "rel"}),
        "img": frozenset(
            {"src", "srcset", "alt", "title", "width", "height", "loading", "class"}
        ),
        "th": frozenset({"align", "colspan", "rowspan"}),
        "td": frozenset({"align", "colspan", "rowspan"}),
        "code": frozenset({"class"}),
    },
    schemes=frozenset({"http", "https", "mailto", "ftp", "tel"}),
)


def url_scheme(url: str) -> Optional[str]:
    """Return the lowercased scheme of `url` as a browser would see it, or None"""
    cleaned = _URL_NOISE_RE.sub("", html.unescape(url)).lower()
    match = _SCHEME_RE.match(cleaned)
    return match.group(1) if match else None


def is_url_allowed(url: str, allow_list: AllowList) -> bool:
    scheme = url_scheme(url)
    if scheme is None:
        return allow_list.allow_relative_urls
    return scheme in allow_list.schemes


def _srcset_allowed(value: str, allow_list: AllowList) -> bool:
    candidates = [part.strip().split(" ")[0] for part in value.split(",")]
    return all(is_url_allowed(c, allow_list) for c in candidates if c)


def sanitize_html(fragment: str, allow_list: AllowList) -> str:
    """Return `fragment` reduced to what `allow_list` permits"""
    if not fragment:
        return ""

    soup = BeautifulSoup(fragment, "html.parser")

    for node in soup.find_all(
        string=lambda s: isinstance(
            s, (Comment, Declaration, Doctype, ProcessingInstruction, CData)
        )
    ):
        node.extract()

    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        if tag.name in allow_list.drop_content and tag.name not in allow_list.tags:
            tag.decompose()

    for tag in soup.find_all(True):
        if tag.name not in allow_list.tags:
            tag.unwrap()
            continue

        for attribute in list(tag.attrs):
            value = tag.attrs[attribute]
            if isinstance(value, list):
                value = " ".join(value)
            if not allow_list.allows_attribute(tag.name, attribute):
                del tag.attrs[attribute]
            elif attribute in URL_ATTRIBUTES and not is_url_allowed(value, allow_list):
                del tag.attrs[attribute]
            elif attribute == "srcset" and not _srcset_allowed(value, allow_list):
                del tag.attrs[attribute]

    return soup.decode(formatter="minimal")
