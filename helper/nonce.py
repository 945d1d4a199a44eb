"""
CSRF nonce providers.

A provider is any callable returning the nonce or None. Providers are asked in
order and the first non-empty value wins.
"""

import os
from html.parser import HTMLParser
from typing import Callable, Dict, List, Optional, Sequence

from .error import ValidationError

NonceProvider = Callable[[], Optional[str]]
PageSource = Callable[[], str]

DEFAULT_NONCE_NAME = "las-nonce"


class _NonceParser(HTMLParser):
    """Collect meta tag content and hidden input values by name/id."""

    def __init__(self):
        super().__init__()
        self.meta: Dict[str, str] = {}
        self.inputs: Dict[str, str] = {}

    def handle_starttag(self, tag, attrs):
        attributes = {key: value or "" for key, value in attrs}
        if tag == "meta" and "name" in attributes:
            self.meta[attributes["name"]] = attributes.get("content", "")
        elif tag == "input" and attributes.get("type", "").lower() == "hidden":
            for key in ("id", "name"):
                if attributes.get(key):
                    self.inputs.setdefault(attributes[key], attributes.get("value", ""))


def _parse(html: str) -> _NonceParser:
    parser = _NonceParser()
    parser.feed(html)
    parser.close()
    return parser


def static_nonce(value: Optional[str]) -> NonceProvider:
    """Provider returning a configured value."""
    return lambda: value or None


def env_nonce(variable: str = "PIPELINER_NONCE") -> NonceProvider:
    """Provider reading an environment variable."""
    return lambda: os.getenv(variable) or None


def meta_tag_nonce(source: PageSource, name: str = DEFAULT_NONCE_NAME) -> NonceProvider:
    """Provider reading ``<meta name=... content=...>`` from a page source."""
    return lambda: _parse(source()).meta.get(name) or None


def hidden_field_nonce(
    source: PageSource, field_id: str = DEFAULT_NONCE_NAME
) -> NonceProvider:
    """Provider reading a hidden ``<input>`` value from a page source."""
    return lambda: _parse(source()).inputs.get(field_id) or None


def default_nonce_providers(
    configured: Optional[str], page_source: Optional[PageSource] = None
) -> List[NonceProvider]:
    """
    Build the default provider order: configuration, meta tag, hidden field.
    """
    providers: List[NonceProvider] = [static_nonce(configured)]
    if page_source is not None:
        providers.append(meta_tag_nonce(page_source))
        providers.append(hidden_field_nonce(page_source))
    return providers


def resolve_nonce(providers: Sequence[NonceProvider]) -> str:
    """
    Return the first nonce any provider yields.

    :raises ValidationError: If no provider yields a nonce.
    """
    for provider in providers:
        value = provider()
        if value:
            return value
    raise ValidationError("Security nonce not available")
