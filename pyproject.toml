[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "clusterregistry"
version = "0.1.0"
description = "HTTP API building blocks for a registry of Kubernetes clusters: routing, bearer-token auth, filtering, caching, rate limiting and cluster handlers."
requires-python = ">=3.10"
keywords = ["kubernetes", "cluster", "registry", "api", "jwt", "middleware"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyjwt",
]

[project.optional-dependencies]
test = [
    "pytest",
    "cryptography",
    "pyjwt",
]

[tool.hatch.build.targets.wheel]
packages = ["clusterregistry"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
