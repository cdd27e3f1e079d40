[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fleetsched"
version = "0.1.0"
description = "Placement and replica scheduling of workloads across a fleet of member clusters, with filter plugins, spread constraints, replica division and failover."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "scheduler",
    "multi-cluster",
    "placement",
    "replicas",
    "failover",
    "taints",
    "tolerations",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["fleetsched"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
