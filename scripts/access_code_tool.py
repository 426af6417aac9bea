from __future__ import annotations

import argparse
import asyncio
import csv
from datetime import datetime, timezone
from pathlib import Path

from study_access.db.repo.access_codes_repo import AccessCodesRepo
from study_access.db.session import SessionLocal
from study_access.economy.access.batch import MAX_BATCH_SIZE, parse_utc_datetime
from study_access.economy.access.issuance import IssuedAccessCode, issue_access_codes
from study_access.economy.types import TIERS
from study_access.services.access_codes import format_access_code


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Access code issuance and listing tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    issue = subparsers.add_parser("issue", help="issue a batch of access codes")
    issue.add_argument("--count", type=int, required=True)
    issue.add_argument("--tier", choices=TIERS, required=True)
    issue.add_argument("--max-uses", type=int, default=1)
    issue.add_argument("--expires-at", help="ISO datetime, defaults to 30 days from now")
    issue.add_argument("--grant-days", type=int)
    issue.add_argument("--note")
    issue.add_argument("--created-by", required=True)
    issue.add_argument("--output-csv", type=Path)

    listing = subparsers.add_parser("list", help="list recently issued access codes")
    listing.add_argument("--note")
    listing.add_argument("--limit", type=int, default=50)
    return parser.parse_args()


def _validate_issue_args(args: argparse.Namespace) -> None:
    if not 1 <= args.count <= MAX_BATCH_SIZE:
        raise ValueError(f"--count must be in range 1..{MAX_BATCH_SIZE}")
    if args.max_uses <= 0:
        raise ValueError("--max-uses must be positive")
    if args.grant_days is not None and args.grant_days <= 0:
        raise ValueError("--grant-days must be positive")


def _write_output(path: Path, issued: list[IssuedAccessCode]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as file:
        writer = csv.writer(file)
        writer.writerow(["code", "code_id", "tier", "expires_at", "max_uses"])
        for item in issued:
            writer.writerow(
                [item.code, item.code_id, item.tier, item.expires_at.isoformat(), item.max_uses]
            )


async def _issue(args: argparse.Namespace) -> int:
    _validate_issue_args(args)
    expires_at = parse_utc_datetime(args.expires_at) if args.expires_at else None
    async with SessionLocal.begin() as session:
        issued = await issue_access_codes(
            session,
            count=args.count,
            tier=args.tier,
            max_uses=args.max_uses,
            created_by=args.created_by,
            expires_at=expires_at,
            grant_days=args.grant_days,
            note=args.note,
            now_utc=datetime.now(timezone.utc),
        )

    output_csv = args.output_csv or Path("reports/access_codes.csv")
    _write_output(output_csv, issued)
    print(f"issued={len(issued)} tier={args.tier} output={output_csv}")  # noqa: T201
    return 0


async def _list(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        codes = await AccessCodesRepo.list_codes(session, note=args.note, limit=args.limit)
    for code in codes:
        print(  # noqa: T201
            f"{format_access_code(code.code)} tier={code.tier} "
            f"uses={code.uses_count}/{code.max_uses} expires_at={code.expires_at.isoformat()}"
        )
    return 0


async def _run() -> int:
    args = _parse_args()
    if args.command == "issue":
        return await _issue(args)
    return await _list(args)


def main() -> int:
    return asyncio.run(_run())


if __name__ == "__main__":
    raise SystemExit(main())
