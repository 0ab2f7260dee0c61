"""
Command-line interface for printshop-erp.

Useful for development and back-office chores without the web front end:
create the schema, push local invoice scans through OCR intake, and list
the inbox.

    printshop-erp init-db
    printshop-erp ingest --input "scans/*.pdf"
    printshop-erp inbox
"""

from __future__ import annotations

import argparse
import glob
import logging
import mimetypes
import os
from pathlib import Path
from typing import List, Optional

from .ai_service import AIService
from .data_service import DataService
from .errors import PrintshopError
from .inbox import InboxProcessor
from .storage import FileStorage


def _data_service(database_url: str) -> DataService:
    return DataService.from_url(database_url, FileStorage())


def cmd_init_db(args: argparse.Namespace) -> int:
    _data_service(args.database_url)
    print(f"Schema ready at {args.database_url}")
    return 0


def cmd_ingest(args: argparse.Namespace) -> int:
    inbox = InboxProcessor(_data_service(args.database_url), AIService())
    files: List[Path] = []
    for pattern in args.input:
        files.extend(Path(p) for p in glob.glob(pattern))
    if not files:
        print("No files matched")
        return 1
    failures = 0
    for path in files:
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        item = inbox.ingest(path.name, path.read_bytes(), mime_type)
        if item["status"] == "error":
            failures += 1
        print(f"Processed {path.name}: status={item['status']}")
    return 1 if failures else 0


def cmd_inbox(args: argparse.Namespace) -> int:
    for item in _data_service(args.database_url).list("inbox_items"):
        extracted = item.get("extractedData") or {}
        print(
            f"{item['id']}  {item['status']:<15} {item['fileName']}"
            f"  {extracted.get('vendorName') or '-'}  {extracted.get('totalAmount') or '-'}"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="printshop-erp", description="printshop-erp back-office tools")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL", "sqlite:///printshop_erp.db"),
        help="SQLAlchemy database URL",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database schema").set_defaults(func=cmd_init_db)

    ingest = sub.add_parser("ingest", help="Upload invoice scans and extract their details")
    ingest.add_argument("--input", nargs="+", required=True, help="Glob pattern(s) for input files")
    ingest.set_defaults(func=cmd_ingest)

    sub.add_parser("inbox", help="List inbox items").set_defaults(func=cmd_inbox)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except PrintshopError as exc:
        print(f"Error: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
