"""Version 2 cluster and service metadata endpoints."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Mapping, Protocol

from .auth import Authenticator
from .cache import MemoryCache, http_cache
from .context import AppConfig, Context, RouteGroup
from .errors import HTTPError, new_error, not_found
from .filters import InvalidQueryError, parse_filter_condition
from .handlers_v1 import find_cluster
from .responses import (
    new_cluster_list_response,
    new_cluster_response,
    new_service_metadata_list_response,
    new_service_metadata_response,
)
from .web import rate_limiter

logger = logging.getLogger(__name__)

DEFAULT_OFFSET = 0
DEFAULT_LIMIT = 200

ALLOWED_STATUSES = ("Inactive", "Active", "Deprecated", "Deleted")
ALLOWED_PHASES = ("Building", "Testing", "Running", "Upgrading")
ON_OFF_TAGS = ("onboarding", "scaling")

CLUSTER_API_PATH = "/apis/registry.ethos.adobe.com/v1"
CLUSTER_NAMESPACE = "cluster-registry"
MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"

_INTEGER = re.compile(r"[+-]?[0-9]+")


class ClusterClient(Protocol):
    """A client able to send a patch to a cluster's API server."""

    def patch(self, path: str, body: bytes, content_type: str) -> Any: ...


class ClientProvider(Protocol):
    """Hands out API clients for registered clusters."""

    def get_client(self, app_config: AppConfig, cluster: Any) -> ClusterClient: ...


class ValidationError(ValueError):
    """Raised when a patch request carries values that are not allowed."""


def _int_param(value: str, default: int) -> int:
    return int(value) if _INTEGER.fullmatch(value) else default


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _type_error(expected: str, value: Any, field_name: str) -> HTTPError:
    return HTTPError(
        HTTPStatus.BAD_REQUEST,
        f"Unmarshal type error: expected={expected}, got={_json_type(value)}, field={field_name}",
    )


def validate_tag(key: str, value: str) -> None:
    """Accept only the known tags, each set to ``on`` or ``off``."""
    if key not in ON_OFF_TAGS:
        raise ValidationError(f"invalid tag {key}")
    if value not in ("on", "off"):
        raise ValidationError(f"{key} tag value must be 'on' or 'off'")


@dataclass
class PatchSpec:
    """The dynamic fields of a cluster that a patch may change."""

    status: str | None = None
    phase: str | None = None
    tags: dict[str, str] | None = None

    def validate(self) -> None:
        """Raise ValidationError unless every given field holds an allowed value."""
        problems = []
        for attr, allowed in (("status", ALLOWED_STATUSES), ("phase", ALLOWED_PHASES)):
            value = getattr(self, attr)
            if value and value not in allowed:
                name = attr.capitalize()
                problems.append(
                    f"Key: 'ClusterSpec.{name}' Error:Field validation for "
                    f"'{name}' failed on the 'oneof' tag"
                )
        if problems:
            raise ValidationError("\n".join(problems))
        for key, value in (self.tags or {}).items():
            validate_tag(key, value)

    def to_dict(self) -> dict[str, Any]:
        """The fields that were given, as sent in a merge patch."""
        result: dict[str, Any] = {}
        if self.status is not None:
            result["status"] = self.status
        if self.phase is not None:
            result["phase"] = self.phase
        if self.tags is not None:
            result["tags"] = dict(self.tags)
        return result


def parse_patch_spec(data: Any) -> PatchSpec:
    """Build a PatchSpec from decoded JSON; wrong types raise a 400 HTTPError."""
    if not isinstance(data, Mapping):
        raise _type_error("object", data, "")
    spec = PatchSpec()
    for attr in ("status", "phase"):
        value = data.get(attr)
        if value is not None and not isinstance(value, str):
            raise _type_error("string", value, attr)
        setattr(spec, attr, value)
    tags = data.get("tags")
    if tags is not None:
        if not isinstance(tags, Mapping):
            raise _type_error("map", tags, "tags")
        for key, value in tags.items():
            if not isinstance(value, str):
                raise _type_error("string", value, f"tags.{key}")
        spec.tags = {str(k): v for k, v in tags.items()}
    return spec


def query_conditions(ctx: Context) -> list[str]:
    """All values of the ``conditions`` query parameter."""
    return ctx.query_params().get("conditions", [])


class ClusterHandler:
    """Handlers for ``/v2/clusters`` and ``/v2/services``."""

    def __init__(
        self,
        app_config: AppConfig,
        db: Any,
        metrics: Any = None,
        client_provider: ClientProvider | None = None,
        cache: Any = None,
        authenticator: Authenticator | None = None,
    ) -> None:
        self.app_config = app_config
        self.db = db
        self.metrics = metrics
        self.client_provider = client_provider
        self.cache = cache if cache is not None else MemoryCache()
        self.authenticator = authenticator

    def register(self, group: RouteGroup) -> None:
        """Add the cluster and service routes to ``group``."""
        if self.authenticator is None:
            raise RuntimeError("Failed to initialize authenticator: none configured")
        auth = self.authenticator
        clusters = group.group("/clusters", auth.verify_token(), rate_limiter(self.app_config))
        clusters.add_route("GET", "/:name", self.get_cluster)
        clusters.add_route(
            "PATCH",
            "/:name",
            self.patch_cluster,
            auth.verify_group_access(self.app_config.api_authorized_group_id),
        )
        clusters.add_route(
            "GET", "", self.list_clusters, http_cache(self.cache, self.app_config, ["clusters"])
        )

        services = group.group("/services", auth.verify_token(), rate_limiter(self.app_config))
        services.add_route("GET", "/:serviceId", self.get_service_metadata)
        services.add_route(
            "GET", "/:serviceId/cluster/:clusterName", self.get_service_metadata_for_cluster
        )

    @staticmethod
    def _paging(ctx: Context) -> tuple[int, int]:
        return (
            _int_param(ctx.query_param("offset"), DEFAULT_OFFSET),
            _int_param(ctx.query_param("limit"), DEFAULT_LIMIT),
        )

    def get_cluster(self, ctx: Context) -> None:
        """Answer with one cluster, found by standard or short name."""
        try:
            cluster = find_cluster(self.db, ctx.param("name"))
        except Exception as exc:
            ctx.json(HTTPStatus.INTERNAL_SERVER_ERROR, new_error(exc))
            return
        if cluster is None:
            ctx.json(HTTPStatus.NOT_FOUND, not_found())
            return
        ctx.json(HTTPStatus.OK, new_cluster_response(cluster))

    def list_clusters(self, ctx: Context) -> None:
        """Answer with a page of clusters, filtered by the ``conditions`` given."""
        offset, limit = self._paging(ctx)
        raw_conditions = query_conditions(ctx)
        try:
            conditions = [parse_filter_condition(qc) for qc in raw_conditions]
        except InvalidQueryError as exc:
            ctx.json(HTTPStatus.BAD_REQUEST, new_error(exc))
            return
        try:
            if conditions:
                clusters, count, more = self.db.list_clusters_with_filter(
                    offset, limit, conditions
                )
            else:
                clusters, count, more = self.db.list_clusters(offset, limit, "", "", "", "")
        except Exception as exc:
            logger.error("Failed to list clusters: %s", exc)
            clusters, count, more = [], 0, False
        ctx.json(HTTPStatus.OK, new_cluster_list_response(clusters, count, offset, limit, more))

    def patch_cluster(self, ctx: Context) -> None:
        """Apply a status, phase or tags change to a cluster."""
        try:
            cluster = find_cluster(self.db, ctx.param("name"))
        except Exception as exc:
            ctx.json(HTTPStatus.INTERNAL_SERVER_ERROR, new_error(exc))
            return
        if cluster is None:
            ctx.json(HTTPStatus.NOT_FOUND, not_found())
            return

        try:
            spec = parse_patch_spec(ctx.bind_json())
        except HTTPError as exc:
            ctx.json(HTTPStatus.BAD_REQUEST, new_error(exc))
            return

        try:
            spec.validate()
        except ValidationError as exc:
            ctx.json(HTTPStatus.BAD_REQUEST, new_error(exc))
            return

        try:
            self._patch(cluster, spec)
        except Exception as exc:
            ctx.json(HTTPStatus.INTERNAL_SERVER_ERROR, new_error(exc))
            return

        ctx.json(HTTPStatus.OK, new_cluster_response(cluster))

    def _patch(self, cluster: Any, spec: PatchSpec) -> None:
        name = (cluster.get("spec") or {}).get("name", "")
        try:
            if self.client_provider is None:
                raise RuntimeError("no client provider configured")
            client = self.client_provider.get_client(self.app_config, cluster)
        except Exception as exc:
            raise RuntimeError(f"failed to get client for cluster {name}: {exc}") from exc

        body = json.dumps({"spec": spec.to_dict()}, separators=(",", ":")).encode()
        path = f"{CLUSTER_API_PATH}/namespaces/{CLUSTER_NAMESPACE}/clusters/{name}"
        result = client.patch(path, body, MERGE_PATCH_CONTENT_TYPE)
        logger.debug("Patch response: %s", result)

    def get_service_metadata(self, ctx: Context) -> None:
        """Answer with a page of one service's metadata across clusters."""
        service_id = ctx.param("serviceId")
        offset, limit = self._paging(ctx)
        raw_conditions = query_conditions(ctx)
        try:
            conditions = [parse_filter_condition(qc) for qc in raw_conditions]
        except InvalidQueryError as exc:
            ctx.json(HTTPStatus.BAD_REQUEST, new_error(exc))
            return
        try:
            if conditions:
                clusters, count, more = self.db.list_clusters_with_service_and_filter(
                    service_id, offset, limit, conditions
                )
            else:
                clusters, count, more = self.db.list_clusters_with_service(
                    service_id, offset, limit, "", "", "", ""
                )
        except Exception as exc:
            logger.error("Failed to list service metadata: %s", exc)
            clusters, count, more = [], 0, False
        ctx.json(
            HTTPStatus.OK,
            new_service_metadata_list_response(clusters, count, offset, limit, more),
        )

    def get_service_metadata_for_cluster(self, ctx: Context) -> None:
        """Answer with one service's metadata for one cluster."""
        service_id = ctx.param("serviceId")
        cluster_name = ctx.param("clusterName")
        try:
            cluster = self.db.get_cluster_with_service(service_id, cluster_name)
        except Exception as exc:
            ctx.json(HTTPStatus.INTERNAL_SERVER_ERROR, new_error(exc))
            return
        if cluster is None:
            ctx.json(HTTPStatus.NOT_FOUND, not_found())
            return
        ctx.json(HTTPStatus.OK, new_service_metadata_response(cluster))