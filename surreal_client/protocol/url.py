"""Endpoint URL helpers."""

from __future__ import annotations

from typing import Mapping
from urllib.parse import urlsplit, urlunsplit

SOCKET_SCHEMES: Mapping[str, str] = {"http": "ws", "https": "wss"}


def normalize_rpc_url(url: str, path: str = "/rpc") -> str:
    """Rewrite an http(s) base URL to ws(s) and append the RPC path.

    >>> normalize_rpc_url("https://db.example.com/")
    'wss://db.example.com/rpc'
    """

    parts = urlsplit(url.strip())
    scheme = SOCKET_SCHEMES.get(parts.scheme.lower(), parts.scheme)
    base_path = parts.path.rstrip("/")
    return urlunsplit((scheme, parts.netloc, base_path + path, parts.query, parts.fragment))
