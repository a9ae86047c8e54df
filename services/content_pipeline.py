"""
Content Pipeline.

Turns a Hacker News `about` field into the bio HTML shown on a profile page.

A bio is only ever shown when its owner has opted in by mentioning their own
address (`<name>.at.hn`) somewhere in it. Rendering then runs in five steps:

1. Give every `<p>` a blank line after it (so Markdown lists survive) and
   strip all tags with the text-only allow-list.
2. Decode HTML entities, recovering the text the user typed.
3. Remove the opt-in marker.
4. Render the text as Markdown. Links get `target="_blank"` and `nofollow`
   unless their author has enough karma; script-capable links are dropped.
5. Sanitize the rendered HTML against the bio allow-list, then apply the
   link policy to every remaining anchor, raw HTML ones included.
"""

import html
import re
from typing import Optional

import mistune
from bs4 import BeautifulSoup
from mistune.plugins.formatting import strikethrough
from mistune.plugins.table import table
from mistune.plugins.url import url
from mistune.util import escape_url

from core.logging_config import get_logger
from core.name_codec import AccountName
from core.sanitizer import (
    BIO_ALLOW_LIST,
    TEXT_ONLY,
    AllowList,
    sanitize_html,
    url_scheme,
)

logger = get_logger(__name__)

KARMA_LINK_FOLLOW_MIN = 200

BLOCKED_LINK_SCHEMES = frozenset({"javascript", "vbscript", "data"})

_P_OPEN_RE = re.compile(r"<p\b[^>]*>", re.IGNORECASE)


def _plain_text(fragment: str) -> str:
    return html.unescape(sanitize_html(fragment, TEXT_ONLY))


def link_rel(follow_links: bool) -> str:
    return "noopener noreferrer" if follow_links else "noopener noreferrer nofollow"


def apply_link_policy(fragment: str, follow_links: bool) -> str:
    """
    Give every anchor in sanitized bio HTML the bio link attributes.

    Raw HTML anchors typed into a bio never pass through `BioRenderer.link`,
    so the policy is enforced again here. An anchor left without an `href`
    (its URL was rejected by the sanitizer) is removed along with its text.
    """
    soup = BeautifulSoup(fragment, "html.parser")
    for anchor in soup.find_all("a"):
        if not anchor.get("href"):
            anchor.decompose()
            continue
        anchor["target"] = "_blank"
        anchor["rel"] = link_rel(follow_links)
    return soup.decode(formatter="minimal")


def opt_in_pattern(account: AccountName, site_domain: str = "at.hn") -> re.Pattern:
    """Regex matching `account`'s address in a bio, with optional <p> wrapper"""
    names = "|".join(
        re.escape(name) for name in dict.fromkeys((account.decoded, account.encoded))
    )
    return re.compile(
        r"(?:<p>)?\s*(?<![\w.-])(?:https?://)?(?:"
        + names
        + r")\."
        + re.escape(site_domain)
        + r"\b\s*(?:</p>)?",
        re.IGNORECASE,
    )


class BioRenderer(mistune.HTMLRenderer):
    """Markdown renderer applying the link and image policy for bios"""

    def __init__(self, follow_links: bool = False):
        super().__init__(escape=False)
        self.follow_links = follow_links

    def link(self, text: str, url: str, title: Optional[str] = None) -> str:
        if url_scheme(url) in BLOCKED_LINK_SCHEMES:
            return ""

        rel = link_rel(self.follow_links)
        attrs = f'href="{html.escape(escape_url(url))}"'
        if title:
            attrs += f' title="{html.escape(_plain_text(title))}"'
        label = sanitize_html(text, TEXT_ONLY)
        return f'<a {attrs} target="_blank" rel="{rel}">{label}</a>'

    def image(self, text: str, url: str, title: Optional[str] = None) -> str:
        alt = _plain_text(text)
        attrs = f'src="{html.escape(escape_url(url))}" alt="{html.escape(alt)}"'
        if alt == "me":
            attrs += ' class="profile"'
        return f"<img {attrs} />"


class ContentPipeline:
    """Opt-in check and bio transformation"""

    def __init__(
        self,
        pre_allow_list: AllowList = TEXT_ONLY,
        post_allow_list: AllowList = BIO_ALLOW_LIST,
        karma_follow_min: int = KARMA_LINK_FOLLOW_MIN,
        site_domain: str = "at.hn",
    ):
        self.pre_allow_list = pre_allow_list
        self.post_allow_list = post_allow_list
        self.karma_follow_min = karma_follow_min
        self.site_domain = site_domain

    def opt_in_pattern(self, account: AccountName) -> re.Pattern:
        return opt_in_pattern(account, self.site_domain)

    def has_opted_in(self, about: str, account: AccountName) -> bool:
        if not about:
            return False
        return bool(self.opt_in_pattern(account).search(html.unescape(about)))

    def render(self, about: str, account: AccountName, karma: int) -> str:
        if not about:
            return ""

        text = sanitize_html(_P_OPEN_RE.sub("<p>\n\n", about), self.pre_allow_list)
        text = html.unescape(text)
        text = self.opt_in_pattern(account).sub("", text)

        follow_links = karma > self.karma_follow_min
        markdown = mistune.create_markdown(
            renderer=BioRenderer(follow_links=follow_links),
            plugins=[table, strikethrough, url],
        )
        rendered = markdown(text)

        logger.debug(
            f"Rendered bio for {account.decoded}",
            extra={"about_length": len(about), "html_length": len(rendered)},
        )
        return apply_link_policy(
            sanitize_html(rendered, self.post_allow_list), follow_links
        )
