# Command-line client for the sync middleware HTTP API.
# Usage:
#   python -m app.scripts.sync_cli create 42 --account main
#   python -m app.scripts.sync_cli update 42 --fields title pricing
#   python -m app.scripts.sync_cli pull --limit 100 --max-pages 3
#   python -m app.scripts.sync_cli import ./exports/catalog.xlsx
# Requires: requests, python-dotenv

import argparse
import json
import os
import sys
import time

import requests
from dotenv import load_dotenv

load_dotenv()

API_URL = os.getenv("SYNC_API_URL", "http://localhost:8000").rstrip("/")
ADMIN_USER = os.getenv("ADMIN_USER", "admin")
ADMIN_PASS = os.getenv("ADMIN_PASS", "changeme")

ACTIONS = ("create", "update", "full-update", "delete", "recreate", "link")


def make_session():
    session = requests.Session()
    session.auth = (ADMIN_USER, ADMIN_PASS)
    session.headers.update({"Content-Type": "application/json"})
    return session


def post(session, path, payload, timeout=300):
    resp = session.post(f"{API_URL}{path}", data=json.dumps(payload), timeout=timeout)
    resp.raise_for_status()
    return resp.status_code, resp.json()


def wait_for_job(session, job_id, interval=2.0, timeout=600):
    deadline = time.time() + timeout
    while time.time() < deadline:
        resp = session.get(f"{API_URL}/api/sync/status/{job_id}", timeout=30)
        resp.raise_for_status()
        rec = resp.json()
        if rec.get("status") in ("done", "error"):
            return rec
        time.sleep(interval)
    raise TimeoutError(f"job {job_id} still running after {timeout}s")


def build_payload(args):
    payload = {"account": args.account, "product_id": args.product_id, "blocking": not args.background}
    if args.action == "create":
        payload["force"] = args.force
    elif args.action == "update":
        fields = {f: True for f in args.fields or []}
        if args.title:
            fields["title"] = args.title
        payload["fields"] = fields
    elif args.action == "full-update":
        payload["create_missing"] = args.create_missing
    return payload


def print_result(body):
    print(json.dumps(body, indent=2, ensure_ascii=False))
    result = body.get("result", body)
    return 0 if result.get("success", body.get("ok")) else 1


def main(argv=None):
    parser = argparse.ArgumentParser(description="Shopify sync middleware client")
    sub = parser.add_subparsers(dest="command", required=True)

    for action in ACTIONS:
        p = sub.add_parser(action)
        p.add_argument("product_id")
        p.add_argument("--account", default="main")
        p.add_argument("--background", action="store_true", help="queue a job and poll until it finishes")
        if action == "create":
            p.add_argument("--force", action="store_true")
        if action == "update":
            p.add_argument("--fields", nargs="+", choices=("title", "pricing", "images"), required=True)
            p.add_argument("--title", help="base title for the title update")
        if action == "full-update":
            p.add_argument("--create-missing", action="store_true")
        p.set_defaults(action=action)

    p = sub.add_parser("pull")
    p.add_argument("--account", default="main")
    p.add_argument("--limit", type=int, default=50)
    p.add_argument("--max-pages", type=int, default=1)

    p = sub.add_parser("test")
    p.add_argument("--account", default="main")

    p = sub.add_parser("import")
    p.add_argument("path")
    p.add_argument("--dry-run", action="store_true")

    args = parser.parse_args(argv)
    session = make_session()

    if args.command == "pull":
        _, body = post(session, "/api/sync/pull", {"account": args.account, "limit": args.limit, "max_pages": args.max_pages})
        return print_result(body)
    if args.command == "test":
        _, body = post(session, "/api/sync/test-connection", {"account": args.account})
        return print_result(body)
    if args.command == "import":
        _, body = post(session, "/api/catalog/import", {"path": os.path.abspath(args.path), "dry_run": args.dry_run})
        return print_result(body)

    status, body = post(session, f"/api/sync/{args.action}", build_payload(args))
    if status == 202:
        print(f"Queued job {body['job_id']}, waiting...")
        body = wait_for_job(session, body["job_id"])
    return print_result(body)


if __name__ == "__main__":
    sys.exit(main())
