from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Application Lifecycle Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("apps", help="List managed applications")

    s_get = sub.add_parser("get", help="Refresh and show one application")
    s_get.add_argument("key")

    s_apply = sub.add_parser("apply", help="Create or update an application from a JSON file")
    s_apply.add_argument("key")
    s_apply.add_argument("--file", required=True, help="Path to the application JSON, '-' for stdin")
    s_apply.add_argument("--timeout", type=int, default=900, help="Request timeout in seconds")

    s_del = sub.add_parser("delete", help="Delete an application")
    s_del.add_argument("key")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    sub.add_parser("rollouts", help="Show blue-green rollouts")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "apps":
        _print(requests.get(f"{base}/apps", timeout=10).json())
        return 0

    if args.cmd == "get":
        r = requests.get(f"{base}/apps/{args.key}", timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "apply":
        if args.file == "-":
            payload = json.load(sys.stdin)
        else:
            with open(args.file, encoding="utf-8") as fp:
                payload = json.load(fp)
        r = requests.put(f"{base}/apps/{args.key}", json=payload, timeout=args.timeout)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "delete":
        r = requests.delete(f"{base}/apps/{args.key}", timeout=300)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "rollouts":
        _print(requests.get(f"{base}/rollouts", timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
