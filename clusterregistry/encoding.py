"""Conversion of cluster short names to standard names."""

from __future__ import annotations

import re

_SHORT_NAME = re.compile(r"(^[a-z]{2,10}[0-9]{1,5})(sbx|thrash|dev|stage|prod)(.*\Z)")


def get_cluster_dash_name(short_name: str) -> str:
    """Convert a short name such as ``cluster01produseast1`` to ``cluster01-prod-useast1``."""
    match = _SHORT_NAME.search(short_name)
    if match is None:
        raise ValueError(f"Cannot convert shortName {short_name} to standard name")
    return "-".join(match.groups())