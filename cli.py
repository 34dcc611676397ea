from __future__ import annotations

import argparse
import sys

import requests


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="ECS Task Tracker CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_diff = sub.add_parser("diff", help="Compare stored backends with the cluster")
    s_diff.add_argument("service", nargs="?", help="Only this service (default: all)")

    s_sync = sub.add_parser("sync", help="Overwrite stored backends with the cluster's endpoints")
    s_sync.add_argument("service", nargs="?", help="Only this service (default: all)")

    s_slow = sub.add_parser("syncslow", help="Start a paced sync of every service in the background")
    s_slow.add_argument("--ms", type=int, default=None, help="Pause between services in milliseconds")

    sub.add_parser("health", help="Check the tracker is up")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd in {"diff", "sync"}:
        url = f"{base}/{args.cmd}"
        if args.service:
            url = f"{url}/{args.service}"
        # Full sweeps walk the whole cluster; give them time.
        r = requests.get(url, timeout=300)
    elif args.cmd == "syncslow":
        url = f"{base}/syncslow" if args.ms is None else f"{base}/syncslow/{args.ms}"
        r = requests.get(url, timeout=10)
    elif args.cmd == "health":
        r = requests.get(f"{base}/health", timeout=10)
    else:
        return 2

    print(r.text)
    return 0 if r.ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
