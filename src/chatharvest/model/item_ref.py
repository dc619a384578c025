"""Item references and identity canonicalization."""

import re
from typing import Any
from urllib.parse import urldefrag, urljoin, urlsplit

from pydantic import BaseModel, ConfigDict, field_validator

_CONVERSATION_PATH = re.compile(r"/c/([^/?#]+)")
_WHITESPACE = re.compile(r"\s+")

UNTITLED = "(untitled)"


def canonicalize_url(href: str, base_url: str | None = None) -> str:
    """Resolve ``href`` against ``base_url`` and strip the fragment.

    Args:
        href: Raw link target, absolute or relative
        base_url: Location the link was found on

    Returns:
        Absolute URL without fragment
    """
    href = (href or "").strip()
    if base_url:
        href = urljoin(base_url, href)
    url, _fragment = urldefrag(href)
    return url


def canonical_item_id(href: str, base_url: str | None = None) -> str:
    """Stable identity for a navigable item.

    Conversation URLs (``.../c/<id>``) are identified by their id so that the
    same conversation reached through different routes (project path, query
    string, fragment) is only queued once. Other targets use the canonical URL.
    """
    url = canonicalize_url(href, base_url)
    match = _CONVERSATION_PATH.search(urlsplit(url).path)
    if match:
        return match.group(1)
    return url


def clean_label(label: str | None) -> str:
    """Collapse whitespace in a human-readable label."""
    text = _WHITESPACE.sub(" ", label or "").strip()
    return text or UNTITLED


class ItemRef(BaseModel):
    """An opaque, stable identifier for a discoverable item plus its label.

    Equality and hashing use ``item_id`` only; labels may repeat across
    distinct items and are never used for identity.
    """

    model_config = ConfigDict(frozen=True)

    item_id: str
    url: str
    label: str = UNTITLED

    @field_validator("label", mode="before")
    @classmethod
    def _clean_label(cls, value: Any) -> str:
        return clean_label(value)

    @classmethod
    def from_href(cls, href: str, label: str | None = None, base_url: str | None = None) -> "ItemRef":
        """Build a reference from a raw link target.

        Args:
            href: Raw link target
            label: Visible text of the link
            base_url: Location the link was found on

        Returns:
            Canonicalized ItemRef
        """
        return cls(
            item_id=canonical_item_id(href, base_url),
            url=canonicalize_url(href, base_url),
            label=label,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ItemRef):
            return NotImplemented
        return self.item_id == other.item_id

    def __hash__(self) -> int:
        return hash(self.item_id)

    def __str__(self) -> str:
        return f"{self.label} <{self.item_id}>"
