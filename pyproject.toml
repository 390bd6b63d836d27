[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "peergate"
version = "0.1.0"
description = "HTTP gateway, remote-node client and traffic tooling for gossip-based peer-to-peer nodes"
requires-python = ">=3.10"
keywords = [
    "peer-to-peer",
    "gossip",
    "http-proxy",
    "wsgi",
    "graphviz",
    "distributed-systems",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
]
dependencies = [
    "werkzeug",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["peergate"]

[tool.hatch.build.targets.sdist]
include = [
    "peergate",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
