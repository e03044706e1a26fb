[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dagflow"
version = "0.1.0"
description = "Small workflow orchestration toolkit: DAG model, topological execution, SQLite lineage and cron scheduling"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "dag",
    "workflow",
    "orchestration",
    "etl",
    "lineage",
    "scheduler",
    "cron",
    "topological-sort",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
dag = "dagflow.cli:main"
dagflow-etl-demo = "dagflow.etl_demo:main"

[tool.hatch.build.targets.wheel]
packages = ["dagflow"]

[tool.hatch.build.targets.sdist]
include = [
    "dagflow",
    "tests",
    "README.md",
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
