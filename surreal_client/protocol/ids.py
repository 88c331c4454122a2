"""Process-wide request identifiers."""

from __future__ import annotations

import itertools

_counter = itertools.count(1)


def next_request_id() -> str:
    return str(next(_counter))
