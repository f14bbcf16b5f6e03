[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "medtrace"
version = "0.1.0"
description = "Drug supply-chain ledger: batches, drugs, organizations and transfers over an in-memory key-value world state"
requires-python = ">=3.10"
dependencies = []
keywords = ["supply-chain", "pharmaceutical", "ledger", "traceability", "smart-contract"]
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
    "Topic :: Office/Business",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["medtrace"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
