# clusterregistry

Building blocks for an HTTP API that serves a registry of Kubernetes
clusters. Everything runs in-process: you build a `Request`, hand it to a
`Router`, and get a `Response` back.

## Modules

- `clusterregistry.context` – `AppConfig`, `Request`, `Response`,
  `Context`, `Router` and `RouteGroup`. `new_router()` returns a router
  that strips trailing slashes, logs requests, answers CORS preflight
  requests for `GET`/`HEAD` and sets an `X-Request-Id` header.
- `clusterregistry.auth` – bearer-token checks. `new_authenticator(app_config,
  public_key, metrics)` builds an `Authenticator` whose `verify_token()`
  middleware checks the token's signature, issuer, expiry and audience
  (the configured client ID, or the same ID prefixed with `spn:`) and stores
  the `oid` and `groups` claims on the context. `verify_group_access(group)`
  lets only members of `group` through. `extract_token` pulls the token out
  of an `Authorization` header value.
- `clusterregistry.cache` – `http_cache(store, app_config, tags)` caches
  successful `GET` responses under a key made by `generate_key` (FNV-1a,
  base 36) from the URL with its query sorted by `sort_url_params`.
  `MemoryCache` is an in-process store with expiry and tag invalidation.
- `clusterregistry.web` – `livez`, `version(version)`,
  `StatusSessions.readyz` and `rate_limiter(app_config)`, a per-identity
  token-bucket limiter (2 requests per second, bursts of 120) used when
  `api_rate_limiter_enabled` is set.
- `clusterregistry.filters` – `parse_filter_condition` for
  `<field>:<operand><value>` queries.
- `clusterregistry.encoding` – `get_cluster_dash_name`.
- `clusterregistry.errors` – `HTTPError`, `ErrorBody`, `new_error`,
  `not_found`.
- `clusterregistry.responses` – list and metadata response bodies.
- `clusterregistry.handlers_v1` and `clusterregistry.handlers_v2` – the
  `ClusterHandler` classes for `/v1/clusters`, `/v2/clusters` and
  `/v2/services`, including validated cluster patches.

## Installation

```
pip install .
```

Tokens are checked with RS256 by default, which needs PyJWT's crypto
support (`pip install "pyjwt[crypto]"`). To run the test suite:

```
pip install ".[test]"
pytest
```

## Wiring a server

```python
from clusterregistry.auth import new_authenticator
from clusterregistry.context import AppConfig, Request, new_router
from clusterregistry.handlers_v2 import ClusterHandler

config = AppConfig(oidc_client_id="client-id", oidc_issuer_url="https://issuer.example.com")
authenticator = new_authenticator(config, public_key)

router = new_router()
api = router.group("/api")
ClusterHandler(config, db, authenticator=authenticator).register(api.group("/v2"))

response = router.handle(
    Request("GET", "/api/v2/clusters?conditions=status:=Active",
            headers={"Authorization": "Bearer token"})
)
print(response.status, response.body)
```

`db` is any object with the methods the handlers call:
`get_cluster(name)`, `list_clusters(offset, limit, region, environment,
status, last_updated)`, `list_clusters_with_filter(offset, limit,
conditions)`, `list_clusters_with_service(service_id, offset, limit,
region, environment, status, last_updated)`,
`list_clusters_with_service_and_filter(service_id, offset, limit,
conditions)` and `get_cluster_with_service(service_id, cluster_name)`. The
list methods return `(clusters, count, more)`; a cluster is a mapping with
a `spec` mapping inside it.

## Filter conditions

```python
from clusterregistry.filters import parse_filter_condition

condition = parse_filter_condition("foo.bar:<10")
assert (condition.field, condition.operand, condition.value) == ("foo.bar", "<", "10")
```

The operand is one of `<`, `<=`, `=`, `>=`, `>`. A query that does not
match raises `InvalidQueryError`.

## Short cluster names

```python
from clusterregistry.encoding import get_cluster_dash_name

assert get_cluster_dash_name("cluster01produseast1") == "cluster01-prod-useast1"
```

Cluster lookups try the name as given, then its dashed form.

## Error bodies

Handlers reply to failures with `{"errors": {"body": "<message>"}}`,
built with `new_error(err)` or `not_found()`.

## What this package does not do

- It has no storage: the cluster database is supplied by the caller.
- It does not talk to Kubernetes: patching a cluster needs a
  `client_provider` whose clients have a `patch(path, body, content_type)`
  method.
- It does not fetch signing keys from an identity provider: the public key
  is passed to `new_authenticator`.
- It has no message-queue consumer and no metrics endpoint;
  `StatusSessions` only calls `status()` on the objects it is given.
- It has no command and does not listen on a socket; `Router.handle` must
  be called by whatever HTTP server you put in front of it.