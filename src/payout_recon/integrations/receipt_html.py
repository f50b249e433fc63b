"""Receipt HTML clean-up before PDF conversion.

These helpers are deterministic so they can be unit-tested without fetching
or converting anything. Receipt emails are laid out for mail clients (fixed
widths, nested single-cell tables, heavy inline CSS); the converted document
needs a plain flow layout that fits the page.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Comment

_STRIP_TAGS = ("script", "style", "noscript")
_STRIP_ATTRS = ("style", "class", "id")
_SIZED_TAGS = ("table", "td", "tr", "th", "img")
_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]+')


def sanitize_file_name(name: str) -> str:
    """Replace runs of filesystem-unsafe characters with an underscore."""

    return _INVALID_FILENAME_CHARS.sub("_", name)


def _unwrap_single_cell_tables(soup: BeautifulSoup) -> None:
    # Innermost first so nested wrappers collapse fully.
    for table in reversed(soup.find_all("table")):
        rows = table.find_all("tr", recursive=False)
        if not rows:
            body = table.find("tbody", recursive=False)
            rows = body.find_all("tr", recursive=False) if body else []
        if len(rows) != 1:
            continue
        cells = rows[0].find_all(["td", "th"], recursive=False)
        if len(cells) != 1:
            continue
        cell = cells[0]
        for child in list(cell.contents):
            table.insert_before(child.extract())
        table.decompose()


def _drop_empty(soup: BeautifulSoup) -> None:
    changed = True
    while changed:
        changed = False
        for tag in soup.find_all(["div", "span"]):
            if tag.decomposed:
                continue
            if tag.find(["img", "br", "hr"]):
                continue
            if not tag.get_text(strip=True):
                tag.decompose()
                changed = True


def normalize_receipt_html(html: str, *, original_url: str | None = None) -> str:
    """Return a simplified receipt document ready for fixed-layout conversion."""

    soup = BeautifulSoup(html, "html.parser")

    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    for tag in soup.find_all(_STRIP_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        for attr in _STRIP_ATTRS:
            tag.attrs.pop(attr, None)
        if tag.name in _SIZED_TAGS:
            tag.attrs.pop("width", None)
            tag.attrs.pop("height", None)

    _unwrap_single_cell_tables(soup)
    _drop_empty(soup)

    for table in soup.find_all("table"):
        table["style"] = "width:100%;"
    for img in soup.find_all("img"):
        img["style"] = "max-width:100%;"

    if original_url:
        link = soup.new_tag("p")
        link.append("Original receipt link: ")
        anchor = soup.new_tag("a", href=original_url)
        anchor.string = original_url
        link.append(anchor)
        (soup.body or soup).append(link)

    return str(soup)
