"""DAG model, in-process and forjar-backed runners, SQLite lineage, cron scheduling and a CLI."""

__version__ = "0.1.0"