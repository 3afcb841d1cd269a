"""
Rewriting of link-bearing HTML attributes to absolute URLs.
"""

from __future__ import annotations

from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

LINK_ATTRIBUTES: tuple[tuple[str, str], ...] = (
    ("a", "href"),
    ("audio", "src"),
    ("video", "src"),
    ("video", "poster"),
    ("img", "src"),
    ("img", "srcset"),
    ("link", "href"),
    ("source", "src"),
    ("source", "srcset"),
    ("picture", "srcset"),
)


def is_absolute_url(value: str) -> bool:
    parts = urlsplit(value)
    return bool(parts.scheme) and (bool(parts.netloc) or parts.scheme in {"mailto", "data", "tel"})


def _absolutize(value: str, base_url: str) -> str | None:
    if is_absolute_url(value):
        return value
    if not base_url or not is_absolute_url(base_url):
        return None
    return urljoin(base_url, value)


def rewrite_srcset(value: str, base_url: str) -> str:
    """Absolutize every candidate URL of a srcset, keeping width/density descriptors."""

    rewritten: list[str] = []
    for candidate in value.split(","):
        parts = candidate.strip().split()
        if not parts:
            continue
        url, descriptors = parts[0], parts[1:]
        resolved = _absolutize(url, base_url)
        if resolved is None:
            rewritten.append(candidate.strip())
            continue
        rewritten.append(" ".join([resolved, *descriptors]))
    return ", ".join(rewritten)


def rewrite_links(content: str, base_url: str) -> str:
    """
    Make link-bearing attributes absolute against base_url.

    Anchors pointing at absolute URLs also get target="_blank". Values that
    cannot be resolved are left untouched.
    """
    if not content or "<" not in content:
        return content

    soup = BeautifulSoup(content, "html.parser")
    for tag_name, attribute in LINK_ATTRIBUTES:
        for element in soup.find_all(tag_name, attrs={attribute: True}):
            value = element.get(attribute)
            if not value:
                continue
            if attribute == "srcset":
                element[attribute] = rewrite_srcset(value, base_url)
                continue
            resolved = _absolutize(value.strip(), base_url)
            if resolved is None:
                continue
            element[attribute] = resolved
            if tag_name == "a":
                element["target"] = "_blank"
    return str(soup)


__all__ = ["LINK_ATTRIBUTES", "is_absolute_url", "rewrite_links", "rewrite_srcset"]
