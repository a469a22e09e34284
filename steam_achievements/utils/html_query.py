"""Small query layer over BeautifulSoup for Steam's class-soup markup.

Steam's stats pages have no stable schema, so every lookup is an
"attribute contains" match. ``HtmlNode`` exposes exactly the queries the
classifier and row extractor need and hides the parse-tree API.
"""

from __future__ import annotations

from collections.abc import Callable

from bs4 import BeautifulSoup, Tag

__all__ = ["HtmlNode", "parse_html"]


def parse_html(html: str) -> HtmlNode:
    """Parses an HTML document and returns its root node."""
    return HtmlNode(BeautifulSoup(html or "", "html.parser"))


def _attr_text(tag: Tag, name: str) -> str:
    value = tag.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


class HtmlNode:
    """Immutable view of one element in a parsed document."""

    __slots__ = ("_tag",)

    def __init__(self, tag: Tag) -> None:
        self._tag = tag

    def __repr__(self) -> str:
        return f"HtmlNode(<{self.name}>)"

    @property
    def name(self) -> str:
        return self._tag.name or ""

    def attr(self, name: str) -> str:
        """Returns an attribute value, or an empty string if absent."""
        return _attr_text(self._tag, name)

    @property
    def class_attr(self) -> str:
        return self.attr("class")

    def class_contains(self, fragment: str) -> bool:
        return fragment in self.class_attr

    @property
    def text(self) -> str:
        """Visible text with entities decoded."""
        return self._tag.get_text()

    def find_all(
        self,
        tag: str | None = None,
        *,
        class_contains: str | None = None,
        id_equals: str | None = None,
        id_startswith: str | None = None,
        attr_contains: tuple[str, str] | None = None,
        predicate: Callable[[HtmlNode], bool] | None = None,
    ) -> list[HtmlNode]:
        """Returns descendants matching every given condition, in document order.

        Args:
            tag: Element name, or None for any element.
            class_contains: Substring the ``class`` attribute must contain.
            id_equals: Exact ``id`` value.
            id_startswith: Required ``id`` prefix.
            attr_contains: ``(attribute, fragment)``; matched case-insensitively.
            predicate: Extra test applied to the wrapped node.
        """

        def matches(candidate: Tag) -> bool:
            if tag is not None and candidate.name != tag:
                return False
            if class_contains is not None and class_contains not in _attr_text(candidate, "class"):
                return False
            if id_equals is not None and _attr_text(candidate, "id") != id_equals:
                return False
            if id_startswith is not None and not _attr_text(candidate, "id").startswith(id_startswith):
                return False
            if attr_contains is not None:
                name, fragment = attr_contains
                if fragment.lower() not in _attr_text(candidate, name).lower():
                    return False
            if predicate is not None and not predicate(HtmlNode(candidate)):
                return False
            return True

        return [HtmlNode(found) for found in self._tag.find_all(matches)]

    def find(self, tag: str | None = None, **conditions) -> HtmlNode | None:
        """Returns the first descendant matching ``find_all`` conditions."""
        found = self.find_all(tag, **conditions)
        return found[0] if found else None

    def exists(self, tag: str | None = None, **conditions) -> bool:
        return self.find(tag, **conditions) is not None

    def children(self) -> list[HtmlNode]:
        """Direct child elements."""
        return [HtmlNode(child) for child in self._tag.children if isinstance(child, Tag)]

    def previous_sibling(self, tag: str | None = None, *, class_contains: str | None = None) -> HtmlNode | None:
        """Nearest preceding sibling element matching the given conditions."""

        def matches(candidate: Tag) -> bool:
            if tag is not None and candidate.name != tag:
                return False
            return class_contains is None or class_contains in _attr_text(candidate, "class")

        sibling = self._tag.find_previous_sibling(matches)
        return HtmlNode(sibling) if isinstance(sibling, Tag) else None
