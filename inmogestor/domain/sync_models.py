from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from inmogestor.domain.collections import Collection, REMOTE_LAST_SYNC, REMOTE_PENDING


class Role(str, Enum):
    OWNER = "owner"
    SECRETARY = "secretary"
    CAPTADOR = "captador"


class SyncState(str, Enum):
    IDLE = "IDLE"
    PULLING = "PULLING"
    APPLIED = "APPLIED"
    UNCHANGED = "UNCHANGED"
    PENDING_PUSH = "PENDING_PUSH"
    PUSHING = "PUSHING"


class SyncStatus(str, Enum):
    SYNCED = "synced"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"


@dataclass(frozen=True)
class UserIdentity:
    user_id: str
    display_name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class UserRole:
    role: Role
    user_id: str
    owner_id: str
    can_edit: bool
    can_delete: bool
    can_add: bool = True

    @property
    def is_delegated(self) -> bool:
        return self.role is not Role.OWNER

    @classmethod
    def owner(cls, user_id: str) -> "UserRole":
        return cls(role=Role.OWNER, user_id=user_id, owner_id=user_id, can_edit=True, can_delete=True)

    @classmethod
    def delegated(cls, role: Role, user_id: str, owner_id: str) -> "UserRole":
        return cls(role=role, user_id=user_id, owner_id=owner_id, can_edit=False, can_delete=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "userId": self.user_id,
            "ownerId": self.owner_id,
            "canEdit": self.can_edit,
            "canDelete": self.can_delete,
            "canAdd": self.can_add,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UserRole":
        return cls(
            role=Role(payload["role"]),
            user_id=str(payload["userId"]),
            owner_id=str(payload["ownerId"]),
            can_edit=bool(payload.get("canEdit", False)),
            can_delete=bool(payload.get("canDelete", False)),
            can_add=bool(payload.get("canAdd", True)),
        )


@dataclass(frozen=True)
class SubUser:
    """Entrada del roster `subUsers` guardado en el documento del propietario."""

    email: str
    role: Role = Role.SECRETARY
    status: str = "pending"
    invited_at: str | None = None
    accepted_at: str | None = None
    sub_user_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"email": self.email, "role": self.role.value, "status": self.status}
        if self.invited_at:
            payload["invitedAt"] = self.invited_at
        if self.accepted_at:
            payload["acceptedAt"] = self.accepted_at
        if self.sub_user_id:
            payload["subUserId"] = self.sub_user_id
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SubUser":
        raw_role = str(payload.get("role") or Role.SECRETARY.value)
        try:
            role = Role(raw_role)
        except ValueError:
            role = Role.SECRETARY
        return cls(
            email=str(payload.get("email", "")),
            role=role,
            status=str(payload.get("status", "pending")),
            invited_at=payload.get("invitedAt"),
            accepted_at=payload.get("acceptedAt"),
            sub_user_id=payload.get("subUserId"),
        )


@dataclass(frozen=True)
class PendingInvitation:
    """Invitación pendiente encontrada en el roster de otro usuario."""

    owner_id: str
    owner_name: str
    owner_email: str
    role: Role
    invited_at: str | None = None


@dataclass(frozen=True)
class RemoteSnapshot:
    """Documento remoto completo de un propietario tal como llegó de la nube."""

    data: dict[str, Any]

    @property
    def last_sync(self) -> str | None:
        value = self.data.get(REMOTE_LAST_SYNC)
        return str(value) if value else None

    @property
    def properties(self) -> list[Any]:
        value = self.data.get(Collection.PROPERTIES.remote_key)
        return value if isinstance(value, list) else []

    @property
    def pending_approvals(self) -> list[Any]:
        value = self.data.get(REMOTE_PENDING)
        return value if isinstance(value, list) else []


@dataclass
class SyncSession:
    """Estado mutable de una sesión de sync.

    Cada coordinador tiene su propia sesión; varias sesiones independientes
    pueden convivir en el mismo proceso.
    """

    identity: UserIdentity
    role: UserRole
    cloud_enabled: bool = False
    state: SyncState = SyncState.IDLE
    status: SyncStatus = SyncStatus.OFFLINE
    push_in_flight: bool = False
    # Hilo que está aplicando un snapshot remoto; None fuera de `apply_remote`.
    applying_thread: int | None = None
    push_owed: bool = False
    last_error: str | None = None

    @property
    def applying_remote(self) -> bool:
        return self.applying_thread is not None

    @property
    def owner_id(self) -> str:
        return self.role.owner_id

    @property
    def is_delegated(self) -> bool:
        return self.role.is_delegated


@dataclass(frozen=True)
class SyncResult:
    state: SyncState
    applied: bool = False
    last_sync: str | None = None
    reason: str = ""
    collections: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PushResult:
    pushed: bool
    last_sync: str | None = None
    reason: str = ""


@dataclass(frozen=True)
class ImportPreview:
    counts: dict[str, int]

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass(frozen=True)
class ImportResult:
    imported: bool
    counts: dict[str, int] = field(default_factory=dict)
    reason: str = ""
