#!/usr/bin/env python3
"""
PostgreSQL compatibility report.

Probes one or more configured backends and prints, per backend:
  1. The backend identified from ``SELECT version()``
  2. SUPPORTED / UNSUPPORTED / ERRORED for every canonical feature query
  3. Optionally, the information_schema description of selected tables

Usage:
    python scripts/compatibility_report.py                       # APP_ENV backend
    python scripts/compatibility_report.py -b postgres -b cockroachdb
    python scripts/compatibility_report.py -b spanner -t tickets -t sprints --json
    python scripts/compatibility_report.py -b postgres -s tracker -t tickets
"""

import argparse
import json
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
logger = logging.getLogger("compatibility_report")


def probe_backend(config_name: str, tables: list[str], schema: str = "public") -> dict:
    from ticket_parity import create_app
    from ticket_parity.core.exceptions import ProbeError
    from ticket_parity.models import db
    from ticket_parity.services.dialect_probe import DialectProbe

    app = create_app(config_name)
    result = {"config": config_name, "tables": {}}
    with app.app_context(), db.engine.connect() as conn:
        probe = DialectProbe(conn, schema=schema)
        report = probe.detect_all()
        result.update(report.to_dict())
        for table in tables:
            try:
                description = probe.describe_table(table)
            except ProbeError as exc:
                result["tables"][table] = {"error": str(exc), "section": exc.section}
                continue
            entry = description.to_dict()
            entry["ddl"] = DialectProbe.reconstruct_create_table(description)
            result["tables"][table] = entry
    return result


def print_report(result: dict) -> None:
    print(f"\n=== {result['config']} ({result['backend']}) ===")
    for feature, outcome in result["features"].items():
        detail = f"  {outcome['detail']}" if outcome["detail"] else ""
        print(f"  {feature:<24} {outcome['status']:<12}{detail}")
    for table, entry in result["tables"].items():
        print(f"\n  -- {table}")
        if "error" in entry:
            print(f"  probe halted in {entry['section']}: {entry['error']}")
            continue
        print("  " + entry["ddl"].replace("\n", "\n  "))


def main():
    parser = argparse.ArgumentParser(description="Report PostgreSQL feature parity per backend.")
    parser.add_argument("-b", "--backend", action="append", dest="backends",
                        help="Config name (postgres, cockroachdb, spanner, development); repeatable.")
    parser.add_argument("-t", "--table", action="append", dest="tables", default=[],
                        help="Table to describe via information_schema; repeatable.")
    parser.add_argument("-s", "--schema", default="public", help="Schema of the described tables (default: public).")
    parser.add_argument("--json", action="store_true", help="Print the raw report as JSON.")
    args = parser.parse_args()

    backends = args.backends or [os.getenv("APP_ENV", "development")]
    results = []
    failed = 0
    for name in backends:
        try:
            results.append(probe_backend(name, args.tables, args.schema))
        except RuntimeError as exc:
            # Missing connection URL for this backend
            logger.error("%s: %s", name, exc)
            failed += 1

    if args.json:
        print(json.dumps(results, indent=2, default=str))
    else:
        for result in results:
            print_report(result)

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
