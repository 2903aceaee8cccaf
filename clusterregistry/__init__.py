"""HTTP API building blocks for a registry of Kubernetes clusters: routing, auth, caching and handlers."""

__version__ = "0.1.0"