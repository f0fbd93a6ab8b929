"""
Run dashboard queries once from CLI and print a JSON summary.
"""

from __future__ import annotations

import argparse
import json

from analytics_access.config import get_dashboard_settings
from analytics_access.domain.models import FetchSuccess
from analytics_access.errors import AuthUnavailable
from analytics_access.query.loader import load_dashboard_queries
from analytics_access.runtime import build_runtime


def main() -> int:
    parser = argparse.ArgumentParser(description="Fetch dashboard queries once, without scheduling.")
    parser.add_argument(
        "--query",
        dest="query",
        default=None,
        help="Optional query name from the dashboard config file.",
    )
    parser.add_argument(
        "--rows",
        dest="rows",
        type=int,
        default=5,
        help="Number of leading rows to include per query.",
    )
    args = parser.parse_args()

    specs = load_dashboard_queries(config_path=get_dashboard_settings().config_path)
    if args.query:
        specs = [spec for spec in specs if spec.name == args.query]
        if not specs:
            parser.error(f"No query named {args.query!r} in the dashboard config.")

    runtime = build_runtime()
    payload = []
    exit_code = 0
    try:
        for spec in specs:
            try:
                credential = runtime.identity.issue_credential()
            except AuthUnavailable as exc:
                payload.append({"query": spec.label, "status": "auth_unavailable", "error": str(exc)})
                exit_code = 1
                continue

            result = runtime.engine.execute(runtime.builder.build(spec, credential))
            if isinstance(result, FetchSuccess):
                payload.append(
                    {
                        "query": spec.label,
                        "status": "success",
                        "rows": len(result.rows),
                        "pages": result.pages,
                        "truncated": result.truncated,
                        "fetched_at": result.fetched_at.isoformat(),
                        "sample": [dict(row) for row in result.rows[: max(0, args.rows)]],
                    }
                )
            elif result is not None:
                payload.append(
                    {
                        "query": spec.label,
                        "status": result.kind.value,
                        "attempts": result.attempts,
                        "error": result.message,
                    }
                )
                exit_code = 1
    finally:
        runtime.engine.close()

    print(json.dumps(payload, indent=2, default=str))
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
