"""
HTML cleaners. Reduce fetched HTML to the text handed to the extractor.
"""

import re
from abc import ABC, abstractmethod

from bs4 import BeautifulSoup
from markdownify import markdownify as md

# Never carry extractable content
NON_CONTENT_TAGS = ["script", "style", "noscript", "iframe", "svg", "template", "head"]

_BLANK_LINES_RE = re.compile(r"\n{3,}")


class Cleaner(ABC):

    @abstractmethod
    def clean(self, html: str) -> str:
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        pass


def _strip_non_content(html):
    soup = BeautifulSoup(html or "", "lxml")
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()
    return soup


class NoopCleaner(Cleaner):
    """Passes HTML through untouched."""

    name = "noop"

    def clean(self, html):
        return html


class TextCleaner(Cleaner):
    """Visible text, one block per line."""

    name = "text"

    def clean(self, html):
        soup = _strip_non_content(html)
        lines = (" ".join(line.split()) for line in soup.get_text("\n").splitlines())
        return "\n".join(line for line in lines if line)


class MarkdownCleaner(Cleaner):
    """
    FLOW: Drops non-content tags -> Converts the rest to Markdown (ATX headings) ->
    Collapses runs of blank lines. Keeps links and table structure the model can use.
    """

    name = "markdown"

    def clean(self, html):
        soup = _strip_non_content(html)
        markdown = md(str(soup), heading_style="ATX")
        markdown = "\n".join(line.rstrip() for line in markdown.splitlines())
        return _BLANK_LINES_RE.sub("\n\n", markdown).strip()


class ChainCleaner(Cleaner):
    """Applies cleaners in order; each receives the previous one's output."""

    def __init__(self, *cleaners):
        if not cleaners:
            raise ValueError("chain cleaner needs at least one cleaner")
        self.cleaners = list(cleaners)

    @property
    def name(self):
        return "chain(" + "->".join(c.name for c in self.cleaners) + ")"

    def clean(self, html):
        out = html
        for cleaner in self.cleaners:
            out = cleaner.clean(out)
        return out


_CLEANERS = {
    "noop": NoopCleaner,
    "text": TextCleaner,
    "markdown": MarkdownCleaner,
}


def new_cleaner(name):
    """
    Builds a cleaner by name. "a,b" or "a->b" builds a chain.
    """
    name = (name or "markdown").strip().lower()
    parts = [p.strip() for p in re.split(r",|->", name) if p.strip()]
    for part in parts:
        if part not in _CLEANERS:
            raise ValueError(f"unknown cleaner: {part} (available: {', '.join(sorted(_CLEANERS))})")
    if len(parts) == 1:
        return _CLEANERS[parts[0]]()
    return ChainCleaner(*(_CLEANERS[p]() for p in parts))
