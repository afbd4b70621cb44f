from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _ref(value: str) -> tuple[str, str]:
    """Parse ``namespace/name`` (namespace defaults to 'default')."""
    if "/" in value:
        ns, name = value.split("/", 1)
        return ns, name
    return "default", value


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Application operator CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("applications", help="List applications")

    s_apply = sub.add_parser("apply", help="Create or update an application")
    s_apply.add_argument("ref", help="namespace/name")
    s_apply.add_argument("--replicas", type=int, default=2)
    s_apply.add_argument("--memory-limit", default="")
    s_apply.add_argument("--cpu-request", default="")
    s_apply.add_argument("--image", default="ghcr.io/stefanprodan/podinfo:latest", help="repository:tag")
    s_apply.add_argument("--ui-color", default="")
    s_apply.add_argument("--ui-message", default="")
    redis = s_apply.add_mutually_exclusive_group()
    redis.add_argument("--redis", dest="redis", action="store_true", help="Enable the Redis cache")
    redis.add_argument("--no-redis", dest="redis", action="store_false", help="Disable the Redis cache (default)")
    s_apply.set_defaults(redis=False)

    s_get = sub.add_parser("get", help="Show an application and its last pass")
    s_get.add_argument("ref")

    s_del = sub.add_parser("delete", help="Delete an application and its dependents")
    s_del.add_argument("ref")

    s_rec = sub.add_parser("reconcile", help="Run a reconcile pass now")
    s_rec.add_argument("ref")

    s_obj = sub.add_parser("objects", help="List dependent objects")
    s_obj.add_argument("--kind")
    s_obj.add_argument("--namespace")
    s_obj.add_argument("--owner-uid")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--application", help="namespace/name")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "applications":
        _print(requests.get(f"{base}/applications", timeout=10).json())
        return 0

    if args.cmd == "apply":
        ns, name = _ref(args.ref)
        repository, _, tag = args.image.rpartition(":")
        if not repository or "/" in tag:
            repository, tag = args.image, "latest"
        payload = {
            "replica_count": args.replicas,
            "memory_limit": args.memory_limit,
            "cpu_request": args.cpu_request,
            "image_repository": repository,
            "image_tag": tag,
            "ui_color": args.ui_color,
            "ui_message": args.ui_message,
            "redis_enabled": args.redis,
        }
        r = requests.put(f"{base}/applications/{ns}/{name}", json=payload, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "get":
        ns, name = _ref(args.ref)
        r = requests.get(f"{base}/applications/{ns}/{name}", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "delete":
        ns, name = _ref(args.ref)
        r = requests.delete(f"{base}/applications/{ns}/{name}", timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "reconcile":
        ns, name = _ref(args.ref)
        r = requests.post(f"{base}/applications/{ns}/{name}/reconcile", timeout=60)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "objects":
        params = {"kind": args.kind, "namespace": args.namespace, "owner_uid": args.owner_uid}
        params = {k: v for k, v in params.items() if v}
        _print(requests.get(f"{base}/objects", params=params, timeout=10).json())
        return 0

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.application:
            params["application"] = args.application
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
