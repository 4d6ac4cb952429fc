"""
HTML to plain-text extraction.

Turns judgment markup into clean text suitable for LLM consumption. Markup
is parsed with BeautifulSoup's lenient ``html.parser`` so unclosed and
misnested tags still yield their text. Entities are decoded by our own
fixed table after the tags are gone, never by the parser.
"""

from __future__ import annotations

import re
from typing import Optional

from bs4 import BeautifulSoup, ParserRejectedMarkup
from bs4.element import NavigableString, PreformattedString, Tag

# Named entities we decode; anything else is left untouched.
_NAMED_ENTITIES: dict[str, str] = {
    "nbsp": " ",
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "apos": "'",
    "mdash": "—",
    "ndash": "–",
    "hellip": "...",
    "laquo": "«",
    "raquo": "»",
    "bdquo": "„",
    "ldquo": "“",
    "rdquo": "”",
    "lsquo": "‘",
    "rsquo": "’",
    "bull": "•",
    "copy": "©",
    "reg": "®",
    "trade": "™",
    "sect": "§",
    "para": "¶",
    "deg": "°",
    "plusmn": "±",
    "frac12": "½",
    "frac14": "¼",
    "frac34": "¾",
    "times": "×",
    "divide": "÷",
}

_ENTITY_RE = re.compile(r"&(#[0-9]+|#[xX][0-9a-fA-F]+|[a-zA-Z][a-zA-Z0-9]*);")

_BLOCK_TAGS = frozenset({
    "p", "div", "section", "article", "header", "footer", "aside",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "blockquote", "pre", "address",
    "table", "tr", "thead", "tbody", "tfoot",
})
_DROPPED_TAGS = frozenset({"script", "style", "noscript"})
_ANY_TAG_RE = re.compile(r"<[^>]+>")

# Highest code point plus the UTF-16 surrogate block, which has no text form
_MAX_CODE_POINT = 0x10FFFF
_SURROGATES = range(0xD800, 0xE000)


def _decode_entity(match: re.Match[str]) -> str:
    body = match.group(1)
    if body.startswith("#"):
        try:
            code = int(body[2:], 16) if body[1] in "xX" else int(body[1:])
        except ValueError:
            return match.group(0)
        if code <= 0 or code > _MAX_CODE_POINT:
            return match.group(0)
        if code in _SURROGATES:
            return "\ufffd"
        return chr(code)
    return _NAMED_ENTITIES.get(body.lower(), match.group(0))


def decode_entities(text: str) -> str:
    """Decode the supported named entities plus decimal and hex numeric ones.

    Single pass: the output of one replacement is never re-scanned, so
    ``&amp;lt;`` decodes to ``&lt;`` rather than ``<``. Numeric references
    to surrogate code points become U+FFFD so the result always encodes
    as UTF-8; references beyond U+10FFFF are left as written.
    """
    if "&" not in text:
        return text
    return _ENTITY_RE.sub(_decode_entity, text)


def normalize_whitespace(text: str, max_newlines: int = 2) -> str:
    """Collapse intra-line whitespace, trim lines, and cap blank-line runs."""
    result = re.sub(r"[^\S\n]+", " ", text.replace("\t", " "))
    result = "\n".join(line.strip() for line in result.split("\n"))
    max_newlines = max(1, max_newlines)
    return re.sub(r"\n{%d,}" % (max_newlines + 1), "\n" * max_newlines, result)


def _parse(html: str) -> BeautifulSoup:
    # Escape ampersands so entities reach decode_entities verbatim
    return BeautifulSoup(html.replace("&", "&amp;"), "html.parser")


def _markers(name: str, preserve_lists: bool) -> tuple[str, str]:
    if name in _BLOCK_TAGS:
        return "\n", "\n"
    if name == "li":
        return ("\n• " if preserve_lists else "\n"), ""
    if name in ("ul", "ol"):
        return ("\n", "\n") if preserve_lists else ("", "")
    if name in ("td", "th"):
        return " ", " | "
    return "", ""


def _flatten(soup: BeautifulSoup, preserve_lists: bool) -> str:
    """Walk the tree in document order, emitting text plus layout markers."""
    parts: list[str] = []
    # Plain str items on the stack are closing markers; nodes are NavigableString or Tag
    stack: list[object] = list(reversed(soup.contents))
    while stack:
        node = stack.pop()
        if type(node) is str:
            parts.append(node)
        elif isinstance(node, PreformattedString):
            continue  # comments, doctype, CDATA
        elif isinstance(node, NavigableString):
            parts.append(str(node))
        elif isinstance(node, Tag):
            name = node.name.lower()
            if name in _DROPPED_TAGS:
                continue
            if name == "br":
                parts.append("\n")
            elif name == "hr":
                parts.append("\n---\n")
            else:
                opening, closing = _markers(name, preserve_lists)
                parts.append(opening)
                stack.append(closing)
                stack.extend(reversed(node.contents))
    return "".join(parts)


def extract_text(
    html: str,
    *,
    preserve_lists: bool = True,
    max_consecutive_newlines: int = 2,
) -> str:
    """Extract plain text from HTML content."""
    if not html:
        return ""
    if "<" not in html:
        text = html
    else:
        try:
            text = _flatten(_parse(html), preserve_lists)
        except ParserRejectedMarkup:
            text = _ANY_TAG_RE.sub(" ", html)
    text = decode_entities(text)
    text = normalize_whitespace(text, max_consecutive_newlines)
    return text.strip()


def extract_title(html: str) -> Optional[str]:
    """Document title from <title>, falling back to the first <h1>."""
    if not html or "<" not in html:
        return None
    soup = _parse(html)
    for node in (soup.title, soup.find("h1")):
        if node is not None:
            title = decode_entities(node.get_text()).strip()
            if title:
                return title
    return None


def extract_meta_description(html: str) -> Optional[str]:
    if not html or "<" not in html:
        return None
    meta = _parse(html).find("meta", attrs={"name": re.compile(r"^description$", re.IGNORECASE)})
    if meta is None:
        return None
    content = meta.get("content")
    if not isinstance(content, str):
        return None
    return decode_entities(content).strip() or None
