"""Version 1 cluster endpoints."""

from __future__ import annotations

import logging
import re
from http import HTTPStatus
from typing import Any

from .auth import Authenticator
from .cache import MemoryCache, http_cache
from .context import AppConfig, Context, RouteGroup
from .encoding import get_cluster_dash_name
from .errors import new_error, not_found
from .responses import new_cluster_list_response, new_cluster_response
from .web import rate_limiter

logger = logging.getLogger(__name__)

DEFAULT_OFFSET = 0
DEFAULT_LIMIT = 200

_INTEGER = re.compile(r"[+-]?[0-9]+")


def _int_param(value: str, default: int) -> int:
    if _INTEGER.fullmatch(value):
        return int(value)
    return default


def find_cluster(db: Any, name: str) -> Any:
    """Look a cluster up by its standard name, then by its short name."""
    cluster = db.get_cluster(name)
    if cluster is not None:
        return cluster
    try:
        dash_name = get_cluster_dash_name(name)
    except ValueError as exc:
        logger.info("Cluster %s is not a short name. Error: %s", name, exc)
        return None
    return db.get_cluster(dash_name)


class ClusterHandler:
    """Handlers for ``/v1/clusters``."""

    def __init__(
        self,
        app_config: AppConfig,
        db: Any,
        metrics: Any = None,
        cache: Any = None,
        authenticator: Authenticator | None = None,
    ) -> None:
        self.app_config = app_config
        self.db = db
        self.metrics = metrics
        self.cache = cache if cache is not None else MemoryCache()
        self.authenticator = authenticator

    def register(self, group: RouteGroup) -> None:
        """Add the cluster routes to ``group``."""
        if self.authenticator is None:
            raise RuntimeError("Failed to initialize authenticator: none configured")
        clusters = group.group(
            "/clusters", self.authenticator.verify_token(), rate_limiter(self.app_config)
        )
        clusters.add_route("GET", "/:name", self.get_cluster)
        clusters.add_route(
            "GET",
            "",
            self.list_clusters,
            http_cache(self.cache, self.app_config, ["clusters"]),
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
        """Answer with a page of clusters filtered by the query parameters."""
        environment = ctx.query_param("environment")
        region = ctx.query_param("region")
        status = ctx.query_param("status")
        last_updated = ctx.query_param("lastUpdated")
        offset = _int_param(ctx.query_param("offset"), DEFAULT_OFFSET)
        limit = _int_param(ctx.query_param("limit"), DEFAULT_LIMIT)

        try:
            clusters, count, more = self.db.list_clusters(
                offset, limit, region, environment, status, last_updated
            )
        except Exception as exc:
            logger.error("Failed to list clusters: %s", exc)
            clusters, count, more = [], 0, False

        ctx.json(HTTPStatus.OK, new_cluster_list_response(clusters, count, offset, limit, more))