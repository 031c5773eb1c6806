"""Policy loader for private message access and rate limiting.

Quota values are kept raw here. Whether a (limit, interval) pair is usable is
decided per entry by the rate limit evaluator, so one bad role entry never
blocks the whole policy from loading.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

import yaml

DEFAULT_QUOTA_KEY = "__default__"
DEFAULT_MESSAGE_KIND = "private_message"
MAX_RECIPIENTS_CAP = 50


@dataclass(frozen=True)
class RawQuota:
    limit: Any = None
    interval_minutes: Any = None


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool
    default: RawQuota
    roles: dict[str, RawQuota] = field(default_factory=dict)


@dataclass(frozen=True)
class MessagesConfig:
    kind: str
    max_recipients: int


@dataclass(frozen=True)
class StorageConfig:
    sqlite: str


@dataclass(frozen=True)
class PolicyConfig:
    version: str
    rate_limit: RateLimitConfig
    messages: MessagesConfig
    storage: StorageConfig


class PolicyLoadError(RuntimeError):
    """Raised when policy cannot be loaded."""


class ConfigProvider(Protocol):
    def current(self) -> PolicyConfig:
        """Return the policy in effect right now."""


def _require(data: dict[str, Any], key: str) -> Any:
    if key not in data:
        raise PolicyLoadError(f"missing required policy key: {key}")
    return data[key]


def _raw_quota(value: Any) -> RawQuota:
    # Anything that is not a mapping counts as an unconfigured pair.
    if not isinstance(value, dict):
        return RawQuota()
    return RawQuota(limit=value.get("limit"), interval_minutes=value.get("interval_minutes"))


def parse_policy(raw: Any) -> PolicyConfig:
    if not isinstance(raw, dict):
        raise PolicyLoadError("policy root must be an object")

    rate_raw = _require(raw, "rate_limit")
    if not isinstance(rate_raw, dict):
        raise PolicyLoadError("rate_limit must be an object")

    enabled = rate_raw.get("enabled", True)
    if not isinstance(enabled, bool):
        raise PolicyLoadError("rate_limit.enabled must be a boolean")

    roles_raw = rate_raw.get("roles") or {}
    if not isinstance(roles_raw, dict):
        raise PolicyLoadError("rate_limit.roles must be an object")

    roles: dict[str, RawQuota] = {}
    for role_id, quota_raw in roles_raw.items():
        key = str(role_id).strip()
        if not key:
            raise PolicyLoadError("rate_limit.roles contains an empty role id")
        if key == DEFAULT_QUOTA_KEY:
            raise PolicyLoadError(f"role id is reserved: {DEFAULT_QUOTA_KEY}")
        roles[key] = _raw_quota(quota_raw)

    messages_raw = raw.get("messages", {})
    if not isinstance(messages_raw, dict):
        raise PolicyLoadError("messages must be an object")
    kind = str(messages_raw.get("kind", DEFAULT_MESSAGE_KIND)).strip()
    if not kind:
        raise PolicyLoadError("messages.kind must not be empty")
    max_recipients_raw = messages_raw.get("max_recipients", MAX_RECIPIENTS_CAP)
    if isinstance(max_recipients_raw, bool):
        raise PolicyLoadError("messages.max_recipients must be an integer")
    try:
        max_recipients = int(max_recipients_raw)
    except (TypeError, ValueError) as exc:
        raise PolicyLoadError("messages.max_recipients must be an integer") from exc
    if max_recipients <= 0 or max_recipients > MAX_RECIPIENTS_CAP:
        raise PolicyLoadError(f"messages.max_recipients must be between 1 and {MAX_RECIPIENTS_CAP}")

    storage_raw = _require(raw, "storage")
    if not isinstance(storage_raw, dict):
        raise PolicyLoadError("storage must be an object")

    return PolicyConfig(
        version=str(_require(raw, "version")),
        rate_limit=RateLimitConfig(
            enabled=enabled,
            default=_raw_quota(rate_raw.get("default")),
            roles=roles,
        ),
        messages=MessagesConfig(kind=kind, max_recipients=max_recipients),
        storage=StorageConfig(sqlite=str(_require(storage_raw, "sqlite"))),
    )


def load_policy(path: Path) -> PolicyConfig:
    if not path.exists():
        raise PolicyLoadError(f"policy file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise PolicyLoadError(f"policy file is not valid YAML: {path}") from exc
    return parse_policy(raw)


class PolicyProvider:
    """Serves the policy file, re-reading it whenever its mtime changes."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._mtime_ns: Optional[int] = None
        self._policy: Optional[PolicyConfig] = None

    def current(self) -> PolicyConfig:
        try:
            mtime_ns = self._path.stat().st_mtime_ns
        except FileNotFoundError as exc:
            raise PolicyLoadError(f"policy file not found: {self._path}") from exc
        if self._policy is None or mtime_ns != self._mtime_ns:
            self._policy = load_policy(self._path)
            self._mtime_ns = mtime_ns
        return self._policy


class StaticPolicyProvider:
    def __init__(self, policy: PolicyConfig) -> None:
        self._policy = policy

    def current(self) -> PolicyConfig:
        return self._policy


def ensure_storage_dirs(root: Path, storage: StorageConfig) -> None:
    (root / Path(storage.sqlite).parent).mkdir(parents=True, exist_ok=True)
