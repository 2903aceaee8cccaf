"""Response bodies for the cluster and service metadata endpoints.

A cluster is a mapping holding a ``spec`` mapping with the cluster's fields;
a spec's service metadata lives under its ``services`` key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

Cluster = Mapping[str, Any]


def _spec(cluster: Cluster) -> Mapping[str, Any]:
    return cluster.get("spec") or {}


def _public_spec(cluster: Cluster) -> dict[str, Any]:
    spec = dict(_spec(cluster))
    spec.pop("services", None)
    return spec


@dataclass
class ClusterList:
    """A page of cluster specs."""

    items: list[dict[str, Any]] = field(default_factory=list)
    items_count: int = 0
    offset: int = 0
    limit: int = 0
    more: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": list(self.items),
            "itemsCount": self.items_count,
            "offset": self.offset,
            "limit": self.limit,
            "more": self.more,
        }


@dataclass
class ServiceMetadata:
    """The service metadata of one cluster."""

    name: str = ""
    services: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "services": self.services}


@dataclass
class ServiceMetadataList:
    """A page of service metadata entries."""

    items: list[ServiceMetadata] = field(default_factory=list)
    items_count: int = 0
    offset: int = 0
    limit: int = 0
    more: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "itemsCount": self.items_count,
            "offset": self.offset,
            "limit": self.limit,
            "more": self.more,
        }


def new_cluster_response(cluster: Cluster) -> dict[str, Any]:
    """The cluster's spec without its service metadata."""
    return _public_spec(cluster)


def new_cluster_list_response(
    clusters: Iterable[Cluster] | None, count: int, offset: int, limit: int, more: bool
) -> ClusterList:
    """A page of cluster specs, each without service metadata."""
    return ClusterList(
        items=[_public_spec(cluster) for cluster in clusters or ()],
        items_count=count,
        offset=offset,
        limit=limit,
        more=more,
    )


def new_service_metadata_response(cluster: Cluster) -> ServiceMetadata:
    """The name and service metadata of a cluster."""
    spec = _spec(cluster)
    return ServiceMetadata(name=spec.get("name", ""), services=spec.get("services"))


def new_service_metadata_list_response(
    clusters: Iterable[Cluster] | None, count: int, offset: int, limit: int, more: bool
) -> ServiceMetadataList:
    """A page of service metadata entries, one per cluster."""
    return ServiceMetadataList(
        items=[new_service_metadata_response(cluster) for cluster in clusters or ()],
        items_count=count,
        offset=offset,
        limit=limit,
        more=more,
    )