[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "clusternet"
version = "0.1.0"
description = "Discover Kubernetes cluster pod and service CIDRs and allocate Globalnet CIDRs"
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "cni", "cidr", "globalnet", "network-discovery"]
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
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["clusternet"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
