[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fedmodules"
version = "0.1.0"
description = "Federated mint and Lightning contract modules over an in-memory key-value store"
requires-python = ">=3.10"
dependencies = []
keywords = ["ecash", "mint", "lightning", "federation", "contracts", "threshold", "blind-signatures"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["fedmodules"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
