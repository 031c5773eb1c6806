"""Application runtime wiring."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from src.config.policy import PolicyConfig, PolicyProvider, ensure_storage_dirs
from src.core.access_gate import AccessDenied, AccessGate
from src.core.db import MessageStore
from src.models.account import PERM_VIEW_OWN, UserAccount
from src.models.message import PrivateMessage

LOGGER = logging.getLogger(__name__)


class MessageValidationError(RuntimeError):
    """Submitted message content is not acceptable."""


@dataclass(frozen=True)
class QuotaStatus:
    user_id: int
    limited: bool
    quota_key: str = ""
    limit: int = 0
    interval_minutes: int = 0
    used: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


@dataclass(frozen=True)
class InboxItem:
    message_id: str
    author_id: int
    subject: str
    created_at: str


class AppRuntime:
    def __init__(self, workspace_root: Path, policy_path: Path) -> None:
        self.workspace_root = workspace_root.resolve()
        self.config = PolicyProvider(policy_path)
        policy = self.config.current()
        ensure_storage_dirs(self.workspace_root, policy.storage)

        db_path = self.workspace_root / policy.storage.sqlite
        self.store = MessageStore(db_path)
        schema_sql = (self.workspace_root / "db/schema.sql").read_text(encoding="utf-8")
        self.store.apply_schema(schema_sql)

        self.gate = AccessGate(config=self.config, counter=self.store)

    @property
    def policy(self) -> PolicyConfig:
        return self.config.current()

    def send_message(
        self,
        account: UserAccount,
        recipient_ids: list[int],
        subject: str,
        body: str,
        now: Optional[datetime] = None,
    ) -> PrivateMessage:
        policy = self.policy
        if len(recipient_ids) > policy.messages.max_recipients:
            raise MessageValidationError(
                f"too many recipients: {len(recipient_ids)} > {policy.messages.max_recipients}"
            )
        created_at = now or datetime.now(timezone.utc)
        try:
            message = PrivateMessage(
                kind=policy.messages.kind,
                author_id=account.user_id,
                recipient_ids=recipient_ids,
                subject=subject,
                body=body,
                created_at=created_at,
            )
        except ValidationError as exc:
            raise MessageValidationError(str(exc)) from exc

        # Must run before the insert; a denial never reaches storage.
        self.gate.validate_submission(account, now=created_at)
        self.store.insert_message(message)
        LOGGER.info(
            "message created message_id=%s author_id=%s recipients=%s",
            message.message_id,
            account.user_id,
            len(message.recipient_ids),
        )
        return message

    def quota_status(self, account: UserAccount, now: Optional[datetime] = None) -> QuotaStatus:
        decision = self.gate.check_create(account, now=now)
        if decision.selection is None:
            return QuotaStatus(user_id=account.user_id, limited=False)

        quota = decision.selection.quota
        return QuotaStatus(
            user_id=account.user_id,
            limited=True,
            quota_key=decision.selection.key,
            limit=quota.limit,
            interval_minutes=quota.interval_minutes,
            used=decision.count,
        )

    def view_message(self, account: UserAccount, message_id: str) -> PrivateMessage:
        message = self.store.get_message(message_id)
        # Unknown and forbidden look the same to the caller.
        if message is None or not self.gate.can_view(account, message):
            raise AccessDenied("message not found")
        return message

    def delete_message(self, account: UserAccount, message_id: str) -> None:
        message = self.store.get_message(message_id)
        if message is None or not self.gate.can_delete(account, message):
            raise AccessDenied("message not found")
        self.store.delete_message(message_id)
        LOGGER.info("message deleted message_id=%s by user_id=%s", message_id, account.user_id)

    def list_inbox(self, account: UserAccount, limit: int = 20) -> list[InboxItem]:
        if not (account.is_privileged or account.has_permission(PERM_VIEW_OWN)):
            raise AccessDenied("permission denied: view own private messages")
        rows = self.store.list_messages_for_user(user_id=account.user_id, limit=limit)
        out: list[InboxItem] = []
        for row in rows:
            out.append(
                InboxItem(
                    message_id=str(row["message_id"]),
                    author_id=int(row["author_id"]),
                    subject=str(row["subject"]),
                    created_at=str(row["created_at"]),
                )
            )
        return out


__all__ = ["AppRuntime", "InboxItem", "MessageValidationError", "QuotaStatus"]
