"""Run one statement against a configured data source from the shell.

Examples:
  sql-runner "SELECT count(*) FROM users"
  sql-runner --data-source warehouse --refresh "SELECT 1"
  sql-runner --data-source warehouse --tables
  sql-runner --cost "SELECT * FROM events"
"""
from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from sql_runner.config.settings import load_settings
from sql_runner.db.registry import DataSourceRegistry
from sql_runner.exceptions.errors import SqlRunnerError
from sql_runner.logging.logger import get_logger, init_logging

log = get_logger("tools.run_statement")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run SQL against a configured data source, with result caching.")
    parser.add_argument("statement", nargs="?", default=None, help="SQL statement to run.")
    parser.add_argument("--config", default=None, help="Settings YAML (defaults to config/<APP_ENV>.yaml).")
    parser.add_argument("--data-sources", dest="data_sources", default=None, help="Data sources YAML (defaults from settings).")
    parser.add_argument("--data-source", dest="data_source", default=None, help="Data source id (defaults to the registry default).")
    parser.add_argument("--refresh", action="store_true", help="Ignore any cached result and run the statement again.")
    parser.add_argument("--clear-cache", dest="clear_cache", action="store_true", help="Delete the cached result of the statement and exit.")
    parser.add_argument("--tables", action="store_true", help="List the tables of the data source's schemas.")
    parser.add_argument("--cost", action="store_true", help="Print the planner's cost estimate instead of running the statement.")
    parser.add_argument("--csv", default=None, help="Also write the result to this CSV file.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.tables and not args.statement:
        parser.error("a statement is required unless --tables is given")

    try:
        settings = load_settings(args.config)
        init_logging(settings.log_level, settings.log_file)
        registry = DataSourceRegistry.load(args.data_sources or settings.data_sources_path, settings=settings)
        ds = registry.get(args.data_source) if args.data_source else registry.default
    except (SqlRunnerError, FileNotFoundError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    try:
        if args.tables:
            for table in ds.tables():
                print(table)
            return 0

        if args.clear_cache:
            ds.clear_cache(args.statement)
            print(f"Cleared {ds.cache_key(args.statement)}")
            return 0

        if args.cost:
            cost = ds.cost(args.statement)
            print("n/a" if cost is None else f"{cost:.2f}")
            return 0

        result = ds.run_statement(args.statement, refresh_cache=args.refresh)
        if result.error:
            print(f"❌ {result.error}", file=sys.stderr)
            return 1

        df = result.to_frame()
        print(df.to_string(index=False) if len(df.columns) else "(no result set)")
        if result.cached_at is not None:
            print(f"(cached at {result.cached_at.isoformat()})")
        if args.csv:
            df.to_csv(args.csv, index=False, encoding="utf-8")
            log.info("Exported CSV", extra={"path": args.csv})
        return 0
    except SqlRunnerError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    finally:
        registry.dispose()


if __name__ == "__main__":
    raise SystemExit(main())
