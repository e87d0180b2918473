"""Boilerplate stripping and HTML → markdown conversion for fetched pages."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup
from markdownify import markdownify

BOILERPLATE_TAGS = ("script", "style", "noscript", "iframe", "svg", "nav", "header", "footer", "aside", "form")

# Tried in order; the first match is treated as the article body
MAIN_CONTENT_SELECTORS = (
    "main",
    "article",
    "[role=main]",
    ".content",
    "#content",
    ".post",
    ".article",
)

_BLANK_LINES = re.compile(r"\n{3,}")


class ExtractionError(ValueError):
    """The page had no readable text."""


def clean_html(html: str) -> BeautifulSoup:
    """Parse `html` and drop scripts, styles and page chrome."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(list(BOILERPLATE_TAGS)):
        tag.decompose()
    return soup


def _main_content(soup: BeautifulSoup):
    for selector in MAIN_CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is not None and node.get_text(strip=True):
            return node
    return soup.body or soup


def extract_article_text(html: str) -> str:
    """
    Return the readable body of a page as markdown.

    Raises:
        ExtractionError: if nothing readable is left after stripping boilerplate
    """
    soup = clean_html(html)
    node = _main_content(soup)
    text = markdownify(str(node), heading_style="ATX", strip=["img"])
    text = _BLANK_LINES.sub("\n\n", text).strip()
    if not text:
        raise ExtractionError("No readable content found on page")
    return text


def is_supported_content_type(content_type: str | None) -> bool:
    """HTML and plain text pages are supported; everything else (PDF, images, ...) is not."""
    if not content_type:
        return True
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime in {"text/html", "application/xhtml+xml", "text/plain"}
