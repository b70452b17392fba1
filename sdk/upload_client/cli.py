"""CLI: secure-upload FILE... | secure-upload --status"""
import argparse
import json
import sys
from pathlib import Path

from .client import UploadClient, UploadRejected


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="secure-upload", description="Upload files to the secure uploader")
    parser.add_argument("--base-url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--status", action="store_true", help="Print server capability status and exit")
    parser.add_argument("--json", action="store_true", help="Print full JSON responses instead of URLs")
    parser.add_argument("files", nargs="*", help="Local file paths to upload")
    args = parser.parse_args(argv)

    if not args.status and not args.files:
        parser.error("give at least one file, or --status")

    client = UploadClient(base_url=args.base_url)
    try:
        if args.status:
            print(json.dumps(client.status(), indent=2))
            return 0
        return cmd_upload(client, args)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()


def cmd_upload(client: UploadClient, args: argparse.Namespace) -> int:
    paths = [Path(f) for f in args.files]
    missing = [p for p in paths if not p.exists()]
    if missing:
        print(f"Missing files: {missing}", file=sys.stderr)
        return 1
    failures = 0
    for p in paths:
        try:
            out = client.upload(p)
        except UploadRejected as e:
            failures += 1
            print(f"  {p.name} rejected: {e.message} ({e.error})", file=sys.stderr)
            continue
        print(json.dumps(out, indent=2) if args.json else out["url"])
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
