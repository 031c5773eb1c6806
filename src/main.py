"""Private message command-line runner."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from src.config.policy import PolicyLoadError
from src.core.access_gate import AccessDenied
from src.core.runtime import AppRuntime, MessageValidationError
from src.models.account import UserAccount
from src.security.rate_limit import RateLimitExceeded

LOGGER = logging.getLogger(__name__)


def _split_csv(raw: Optional[str]) -> frozenset[str]:
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def _parse_recipients(raw: str) -> list[int]:
    # Duplicates are kept so the message model can reject them.
    out: list[int] = []
    for part in raw.split(","):
        value = part.strip()
        if not value:
            continue
        try:
            out.append(int(value))
        except ValueError as exc:
            raise MessageValidationError(f"invalid recipient id: {value}") from exc
    return out


def _account_from_args(args: argparse.Namespace) -> UserAccount:
    return UserAccount(
        user_id=args.user_id,
        roles=_split_csv(args.roles),
        permissions=_split_csv(args.permissions),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Private message access runner")
    parser.add_argument("--policy", help="Policy YAML path (default: config/policy.yaml)")
    parser.add_argument("--user-id", type=int, required=True)
    parser.add_argument("--roles", help="Comma separated role ids")
    parser.add_argument("--permissions", help="Comma separated permission names")

    sub = parser.add_subparsers(dest="command", required=True)

    send = sub.add_parser("send", help="Send a private message")
    send.add_argument("--to", required=True, help="Comma separated recipient user ids")
    send.add_argument("--subject", required=True)
    send.add_argument("--body", required=True)

    sub.add_parser("quota", help="Show the quota in effect and how much is used")

    inbox = sub.add_parser("inbox", help="List recent messages for the user")
    inbox.add_argument("--limit", type=int, default=20)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)

    workspace_root = Path(os.getenv("PM_WORKSPACE_ROOT", Path(__file__).resolve().parents[1]))
    policy_path = Path(args.policy or os.getenv("PM_POLICY_PATH", "") or workspace_root / "config/policy.yaml")

    try:
        runtime = AppRuntime(workspace_root=workspace_root, policy_path=policy_path)
    except PolicyLoadError as exc:
        LOGGER.error("startup blocked by invalid policy: %s", exc)
        print(
            "Startup failed: policy is invalid.\n"
            f"- policy: {policy_path}\n"
            f"- detail: {exc}"
        )
        return 2

    account = _account_from_args(args)
    try:
        if args.command == "send":
            recipients = _parse_recipients(args.to)
            message = runtime.send_message(
                account=account,
                recipient_ids=recipients,
                subject=args.subject,
                body=args.body,
            )
            print(f"sent {message.message_id}")
        elif args.command == "quota":
            status = runtime.quota_status(account)
            if not status.limited:
                print("no rate limit applies")
            else:
                print(
                    f"quota={status.quota_key} limit={status.limit} "
                    f"interval_minutes={status.interval_minutes} used={status.used} "
                    f"remaining={status.remaining}"
                )
        elif args.command == "inbox":
            for item in runtime.list_inbox(account, limit=args.limit):
                print(f"{item.created_at} {item.message_id} from={item.author_id} {item.subject}")
    except (RateLimitExceeded, AccessDenied, MessageValidationError) as exc:
        print(f"Rejected: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
