"""Query template builder producing query text plus bound parameters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Sequence, Union

BINDING_PREFIX = "__tagged_template_literal_binding__"


@dataclass(frozen=True)
class PreparedQuery:
    query: str
    bindings: Dict[str, Any] = field(default_factory=dict)


def surrealql(query: Union[str, Sequence[str]], *values: Any) -> PreparedQuery:
    """Build a query from text segments interleaved with bound values.

    ``surql(["SELECT * FROM user WHERE age > ", ""], 18)`` yields the query
    ``SELECT * FROM user WHERE age > $__tagged_template_literal_binding__0`` with the value bound
    under ``__tagged_template_literal_binding__0``. A plain string is used verbatim.
    """

    names = [f"{BINDING_PREFIX}{index}" for index in range(len(values))]
    bindings = dict(zip(names, values))
    if isinstance(query, str):
        return PreparedQuery(query, bindings)
    pieces: list[str] = []
    for index, segment in enumerate(query):
        pieces.append(segment)
        if index < len(names):
            pieces.append(f"${names[index]}")
    return PreparedQuery("".join(pieces), bindings)


surql = surrealql
