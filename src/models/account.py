"""Host-supplied user account view."""

from __future__ import annotations

from dataclasses import dataclass, field

PERM_BYPASS = "bypass private message access"
PERM_ADMINISTER = "administer private messages"
PERM_CREATE = "create private messages"
PERM_VIEW_OWN = "view own private messages"
PERM_DELETE_OWN = "delete own private messages"


@dataclass(frozen=True)
class UserAccount:
    user_id: int
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    @property
    def is_privileged(self) -> bool:
        return PERM_BYPASS in self.permissions or PERM_ADMINISTER in self.permissions
