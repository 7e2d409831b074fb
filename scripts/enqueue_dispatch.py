"""Insert one dispatch record through the intake API and optionally wait for its outcome.

Useful for smoke-testing a deployment against a real device token.
"""

import argparse
import json
import time

import httpx


def parse_data(pairs: list[str]) -> dict[str, str]:
    """Turn repeated `key=value` arguments into the data mapping."""

    data = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise SystemExit(f"invalid --data entry {pair!r}, expected key=value")
        data[key] = value
    return data


def main() -> None:
    """CLI entrypoint."""

    parser = argparse.ArgumentParser(description="Queue one push notification via the relay.")
    parser.add_argument("--base-url", default="http://localhost:8010")
    parser.add_argument("--target", required=True, help="Device registration token")
    parser.add_argument("--title", required=True)
    parser.add_argument("--body", default="")
    parser.add_argument("--data", action="append", default=[], help="key=value, repeatable")
    parser.add_argument("--channel-id", default=None)
    parser.add_argument("--wait-seconds", type=float, default=0.0, help="Poll until terminal status")
    args = parser.parse_args()

    request = {
        "target": args.target,
        "payload": {"title": args.title, "body": args.body, "data": parse_data(args.data)},
    }
    if args.channel_id:
        request["platform_options"] = {"channel_id": args.channel_id}

    with httpx.Client(base_url=args.base_url, timeout=10.0) as client:
        resp = client.post("/internal/dispatches", json=request)
        resp.raise_for_status()
        record = resp.json()
        print(json.dumps(record, indent=2))

        deadline = time.monotonic() + args.wait_seconds
        while record["status"] == "PENDING" and time.monotonic() < deadline:
            time.sleep(0.5)
            resp = client.get(f"/dispatches/{record['id']}")
            resp.raise_for_status()
            record = resp.json()
        if args.wait_seconds:
            print(json.dumps(record, indent=2))


if __name__ == "__main__":
    main()
