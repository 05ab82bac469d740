from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Docker Consul Registrar CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Show watch loop status")

    s_ev = sub.add_parser("events", help="Show journaled events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--container", help="Only events for this short container id")

    sub.add_parser("sweep", help="Queue a full sweep of all containers")

    s_eval = sub.add_parser("evaluate", help="Queue reconciliation of one container")
    s_eval.add_argument("container_id")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "status":
        _print(requests.get(f"{base}/status", timeout=10).json())
        return 0

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.container:
            params["container_id"] = args.container
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    if args.cmd == "sweep":
        r = requests.post(f"{base}/sweep", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "evaluate":
        r = requests.post(f"{base}/containers/{args.container_id}/evaluate", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
