from __future__ import annotations

import argparse
import json
import os
import sys
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

DEFAULT_SERVICE_URL = "http://localhost:8080"


def _resolve_service_url(value: str | None) -> str:
    return (value or os.getenv("FLEETGATE_SERVICE_URL", DEFAULT_SERVICE_URL)).rstrip("/")


def _request_json(
    method: str,
    url: str,
    payload: dict[str, Any] | None = None,
    timeout: int = 30,
) -> Any:
    data = None
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        method=method,
        headers={"Content-Type": "application/json"},
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
            if not raw:
                return {}
            return json.loads(raw.decode("utf-8"))
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        detail: str | dict[str, Any] = body
        try:
            detail = json.loads(body)
        except json.JSONDecodeError:
            detail = body or exc.reason
        raise RuntimeError(f"HTTP {exc.code} {detail}") from exc


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _with_query(url: str, params: dict[str, str | None]) -> str:
    present = {key: value for key, value in params.items() if value}
    if not present:
        return url
    return f"{url}?{urllib.parse.urlencode(present)}"


def cmd_status(args: argparse.Namespace) -> int:
    service_url = _resolve_service_url(args.service_url)
    _print_json(_request_json("GET", f"{service_url}/health"))
    return 0


def cmd_devices(args: argparse.Namespace) -> int:
    service_url = _resolve_service_url(args.service_url)
    url = _with_query(
        f"{service_url}/fleet/devices",
        {"org_id": args.org_id, "product_id": args.product_id},
    )
    _print_json(_request_json("GET", url))
    return 0


def cmd_deployments(args: argparse.Namespace) -> int:
    service_url = _resolve_service_url(args.service_url)
    url = _with_query(
        f"{service_url}/fleet/deployments",
        {"org_id": args.org_id, "product_id": args.product_id},
    )
    _print_json(_request_json("GET", url))
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    service_url = _resolve_service_url(args.service_url)
    device_id = urllib.parse.quote(args.device_id, safe="")
    _print_json(_request_json("GET", f"{service_url}/fleet/devices/{device_id}/update"))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fleetgate")
    subparsers = parser.add_subparsers(dest="command")

    status_parser = subparsers.add_parser("status", help="Check service health")
    status_parser.add_argument("--service-url")
    status_parser.set_defaults(func=cmd_status)

    devices_parser = subparsers.add_parser("devices", help="List devices")
    devices_parser.add_argument("--service-url")
    devices_parser.add_argument("--org-id")
    devices_parser.add_argument("--product-id")
    devices_parser.set_defaults(func=cmd_devices)

    deployments_parser = subparsers.add_parser("deployments", help="List deployments")
    deployments_parser.add_argument("--service-url")
    deployments_parser.add_argument("--org-id")
    deployments_parser.add_argument("--product-id")
    deployments_parser.set_defaults(func=cmd_deployments)

    resolve_parser = subparsers.add_parser(
        "resolve", help="Ask the service whether a device has an update"
    )
    resolve_parser.add_argument("--service-url")
    resolve_parser.add_argument("--device-id", required=True)
    resolve_parser.set_defaults(func=cmd_resolve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 2
    try:
        return args.func(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
