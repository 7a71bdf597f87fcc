"""XML-RPC request bodies for weblogUpdates pings."""

from __future__ import annotations

from typing import List, Sequence, Tuple

from constants import EXTENDED_PING_METHOD, PING_METHOD
from models import SiteInfo

__all__ = ["escape_xml", "encode_method_call", "select_ping_method"]

_XML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
)


def escape_xml(text: str) -> str:
    """Escape the five reserved XML characters, ampersand first."""
    escaped = str(text)
    for char, entity in _XML_ESCAPES:
        escaped = escaped.replace(char, entity)
    return escaped


def encode_method_call(method_name: str, params: Sequence[str]) -> str:
    """Build a methodCall document with every parameter typed as a string."""
    param_xml = "".join(
        f"<param><value><string>{escape_xml(p)}</string></value></param>" for p in params
    )
    return (
        '<?xml version="1.0"?>\n'
        "<methodCall>\n"
        f"  <methodName>{escape_xml(method_name)}</methodName>\n"
        f"  <params>{param_xml}</params>\n"
        "</methodCall>"
    )


def select_ping_method(site: SiteInfo) -> Tuple[str, List[str]]:
    """Pick the extended ping when a feed URL is known, the basic one otherwise."""
    if site["feedUrl"]:
        return EXTENDED_PING_METHOD, [site["name"], site["url"], site["feedUrl"]]
    return PING_METHOD, [site["name"], site["url"]]
