from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from inmogestor.application.local_store import LocalStore
from inmogestor.bootstrap.logging import log_operational_error
from inmogestor.core.errors import BusinessError, DelegatedWriteBlocked, PersistenceError, ValidationError
from inmogestor.core.observability import OperationContext
from inmogestor.domain.cloud_errors import CloudConfigError, CloudServiceError, CloudUnavailableError
from inmogestor.domain.collections import PENDING_TARGETS, REMOTE_PENDING, USER_ROLE_KEY, Collection
from inmogestor.domain.models import PendingApproval, Record, from_wire, to_wire
from inmogestor.domain.ports import CloudDocumentPort, KeyValueStorePort, NotifierPort, UserDirectoryPort
from inmogestor.domain.services import Clock, generate_id, now_iso, utc_now
from inmogestor.domain.sync_models import PendingInvitation, Role, SubUser, UserIdentity, UserRole

logger = logging.getLogger(__name__)

CLOUD_ERRORS = (CloudConfigError, CloudServiceError, CloudUnavailableError)

FIELD_PARENT_USER = "parentUserId"
FIELD_ROLE = "role"
FIELD_SUB_USERS = "subUsers"
FIELD_DISPLAY_NAME = "displayName"
STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"


def _parse_delegated_role(raw: Any) -> Role:
    try:
        role = Role(str(raw))
    except ValueError:
        return Role.SECRETARY
    # Con parentUserId el usuario nunca es propietario.
    return Role.SECRETARY if role is Role.OWNER else role


def _roster(user_data: Mapping[str, Any] | None) -> list[SubUser]:
    entries = (user_data or {}).get(FIELD_SUB_USERS) or []
    return [SubUser.from_dict(entry) for entry in entries if isinstance(entry, Mapping)]


def _same_email(left: str | None, right: str | None) -> bool:
    return bool(left and right and left.strip().lower() == right.strip().lower())


class RoleResolver:
    """Resuelve propietario / secretario / captador y canaliza las altas delegadas.

    El bloqueo de edición y borrado para sub-usuarios vive solo en este cliente:
    es un aviso de flujo de trabajo, no una frontera de seguridad. Un cliente
    modificado puede escribir en el documento del propietario si las reglas del
    servidor no lo impiden.
    """

    def __init__(
        self,
        user_directory: UserDirectoryPort,
        document_port: CloudDocumentPort,
        kv_store: KeyValueStorePort,
        identity: UserIdentity,
        *,
        notifier: NotifierPort | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._directory = user_directory
        self._document_port = document_port
        self._kv_store = kv_store
        self._identity = identity
        self._notifier = notifier
        self._clock = clock
        self._role = UserRole.owner(identity.user_id)

    # -- resolución ----------------------------------------------------------------

    @property
    def role(self) -> UserRole:
        return self._role

    @property
    def owner_id(self) -> str:
        return self._role.owner_id

    def is_delegated(self) -> bool:
        return self._role.is_delegated

    def is_secretary(self) -> bool:
        return self._role.role is Role.SECRETARY

    def is_captador(self) -> bool:
        return self._role.role is Role.CAPTADOR

    def init_user_role(self) -> UserRole:
        """Consulta `users/{uid}` y el roster del propietario.

        Si la consulta falla se continúa como propietario (fail-open): el usuario
        sigue trabajando sobre su propio documento.
        """
        with OperationContext("init_user_role", owner_id=self._identity.user_id):
            try:
                role = self._resolve()
            except CLOUD_ERRORS as exc:
                log_operational_error(
                    logger,
                    "No se pudo resolver el rol; se continúa como propietario",
                    exc=exc,
                    extra={"user_id": self._identity.user_id},
                )
                role = UserRole.owner(self._identity.user_id)
        self._set_role(role)
        logger.info("Rol resuelto: %s", role.role.value, extra={"extra": role.to_dict()})
        return role

    def cached_role(self) -> UserRole | None:
        raw = self._kv_store.get(USER_ROLE_KEY)
        if not raw:
            return None
        try:
            return UserRole.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, ValueError, TypeError):
            logger.warning("Rol en caché ilegible; se ignora")
            return None

    def _resolve(self) -> UserRole:
        user_id = self._identity.user_id
        user = self._directory.get_user(user_id)
        parent_id = str((user or {}).get(FIELD_PARENT_USER) or "")
        if not parent_id or parent_id == user_id:
            return UserRole.owner(user_id)

        stored_role = _parse_delegated_role((user or {}).get(FIELD_ROLE))
        roster_role = self._role_in_owner_roster(parent_id)
        role = stored_role
        if roster_role is not None and roster_role is not stored_role:
            logger.info(
                "El propietario cambió el rol: %s -> %s",
                stored_role.value,
                roster_role.value,
                extra={"extra": {"user_id": user_id, "owner_id": parent_id}},
            )
            self._directory.update_user(user_id, {FIELD_ROLE: roster_role.value})
            role = roster_role
        return UserRole.delegated(role, user_id, parent_id)

    def _role_in_owner_roster(self, owner_id: str) -> Role | None:
        for entry in _roster(self._directory.get_user(owner_id)):
            if entry.sub_user_id == self._identity.user_id or _same_email(entry.email, self._identity.email):
                return _parse_delegated_role(entry.role.value)
        return None

    def _set_role(self, role: UserRole) -> None:
        self._role = role
        try:
            self._kv_store.set(USER_ROLE_KEY, json.dumps(role.to_dict()))
        except PersistenceError as exc:
            log_operational_error(logger, "No se pudo guardar el rol en caché", exc=exc)

    # -- escrituras delegadas ------------------------------------------------------

    def guard_edit(self, record_id: str | None = None) -> None:
        if self._role.is_delegated or not self._role.can_edit:
            raise DelegatedWriteBlocked(f"Un {self._role.role.value} no puede editar registros existentes ({record_id or '-'})")

    def guard_delete(self, record_id: str | None = None) -> None:
        if self._role.is_delegated or not self._role.can_delete:
            raise DelegatedWriteBlocked(f"Un {self._role.role.value} no puede eliminar registros ({record_id or '-'})")

    def save_pending(self, record_type: str, record: Record | Mapping[str, Any]) -> PendingApproval | None:
        """Deja un alta en `pendingApprovals` del propietario sin tocar sus colecciones."""
        if record_type not in PENDING_TARGETS:
            raise ValidationError(f"Tipo pendiente no soportado: {record_type}")
        data = dict(to_wire(record) if isinstance(record, Record) else record)
        data["id"] = data.get("id") or generate_id(self._clock)
        data["createdAt"] = now_iso(self._clock)
        entry = PendingApproval(
            type=record_type,
            data=data,
            added_by=self._identity.user_id,
            added_by_name=self._identity.display_name or self._identity.email,
            added_at=now_iso(self._clock),
        )
        with OperationContext("save_pending", owner_id=self.owner_id):
            try:
                self._document_port.append_pending(self.owner_id, [to_wire(entry)])
            except CLOUD_ERRORS as exc:
                log_operational_error(logger, "No se pudo enviar el alta a aprobación", exc=exc, extra={"type": record_type})
                self._notify("No se pudo enviar a aprobación. Revisa la conexión.", "error")
                return None
        self._notify("Enviado a aprobación del propietario", "success")
        return entry

    def list_own_pending(self, record_type: str | None = None) -> list[PendingApproval]:
        return [
            entry
            for entry in self.list_pending()
            if entry.added_by == self._identity.user_id and (record_type is None or entry.type == record_type)
        ]

    def recover_stranded_signs(self) -> int:
        """Mueve a pendientes los carteles que un captador dejó en su propio documento."""
        if not self._role.is_delegated:
            return 0
        user_id = self._identity.user_id
        try:
            own = self._document_port.read(user_id) or {}
            signs = [sign for sign in own.get(Collection.SIGNS.remote_key) or [] if isinstance(sign, dict)]
            if not signs:
                return 0
            added_at = now_iso(self._clock)
            entries = [
                to_wire(
                    PendingApproval(
                        type="sign",
                        data=sign,
                        added_by=user_id,
                        added_by_name=self._identity.display_name or self._identity.email,
                        added_at=added_at,
                        recovered=True,
                    )
                )
                for sign in signs
            ]
            self._document_port.append_pending(self.owner_id, entries)
            self._document_port.write_fields(user_id, {Collection.SIGNS.remote_key: []})
        except CLOUD_ERRORS as exc:
            log_operational_error(logger, "No se pudieron recuperar carteles huérfanos", exc=exc)
            return 0
        logger.info("Carteles recuperados: %s", len(entries))
        self._notify(f"Se recuperaron {len(entries)} carteles anteriores", "success")
        return len(entries)

    # -- aprobaciones (propietario) -----------------------------------------------

    def list_pending(self) -> list[PendingApproval]:
        data = self._document_port.read(self.owner_id) or {}
        return [from_wire(PendingApproval, entry) for entry in data.get(REMOTE_PENDING) or [] if isinstance(entry, dict)]

    def approve_pending(self, index: int, local_store: LocalStore) -> Record | None:
        """Pasa la entrada `index` a su colección local; la subida la hace el coordinador."""
        self._require_owner()
        pending = self._read_pending_raw()
        if not 0 <= index < len(pending):
            return None
        item = pending.pop(index)
        collection = PENDING_TARGETS.get(str(item.get("type")), Collection.SIGNS)
        self._document_port.write_fields(self.owner_id, {REMOTE_PENDING: pending})
        approved = local_store.insert_approved(collection, item.get("data") or {})
        logger.info("Pendiente aprobado", extra={"extra": {"type": item.get("type"), "id": approved.id}})
        return approved

    def reject_pending(self, index: int) -> bool:
        self._require_owner()
        pending = self._read_pending_raw()
        if not 0 <= index < len(pending):
            return False
        pending.pop(index)
        self._document_port.write_fields(self.owner_id, {REMOTE_PENDING: pending})
        return True

    def _read_pending_raw(self) -> list[dict[str, Any]]:
        data = self._document_port.read(self.owner_id) or {}
        return [entry for entry in data.get(REMOTE_PENDING) or [] if isinstance(entry, dict)]

    # -- roster de sub-usuarios ----------------------------------------------------

    def list_sub_users(self) -> list[SubUser]:
        return _roster(self._directory.get_user(self._identity.user_id))

    def invite_sub_user(self, email: str, role: Role = Role.SECRETARY) -> SubUser:
        self._require_owner()
        email = email.strip()
        if not email:
            raise ValidationError("El email es obligatorio")
        if _same_email(email, self._identity.email):
            raise ValidationError("No puedes invitarte a ti mismo")
        if role is Role.OWNER:
            raise ValidationError("Un sub-usuario no puede ser propietario")
        roster = self.list_sub_users()
        if any(_same_email(entry.email, email) for entry in roster):
            raise ValidationError("Este email ya fue invitado")
        invitation = SubUser(email=email, role=role, status=STATUS_PENDING, invited_at=now_iso(self._clock))
        roster.append(invitation)
        self._directory.update_user(self._identity.user_id, {FIELD_SUB_USERS: [entry.to_dict() for entry in roster]})
        return invitation

    def find_pending_invitations(self) -> list[PendingInvitation]:
        """Propietarios con una invitación pendiente para el email de esta identidad."""
        if not self._identity.email:
            return []
        try:
            users = self._directory.list_users()
        except CLOUD_ERRORS as exc:
            log_operational_error(logger, "No se pudieron consultar las invitaciones", exc=exc)
            return []
        invitations: list[PendingInvitation] = []
        for owner_id, data in users:
            if owner_id == self._identity.user_id:
                continue
            entry = next(
                (
                    item
                    for item in _roster(data)
                    if item.status == STATUS_PENDING and _same_email(item.email, self._identity.email)
                ),
                None,
            )
            if entry is None:
                continue
            owner_email = str(data.get("email") or "")
            invitations.append(
                PendingInvitation(
                    owner_id=owner_id,
                    owner_name=str(data.get(FIELD_DISPLAY_NAME) or owner_email),
                    owner_email=owner_email,
                    role=entry.role,
                    invited_at=entry.invited_at,
                )
            )
        return invitations

    def accept_invitation(self, owner_id: str) -> UserRole:
        owner = self._directory.get_user(owner_id)
        if owner is None:
            raise BusinessError("Usuario principal no encontrado")
        roster = _roster(owner)
        for index, entry in enumerate(roster):
            if _same_email(entry.email, self._identity.email) and entry.status == STATUS_PENDING:
                break
        else:
            raise BusinessError("Invitación no encontrada")

        accepted = SubUser(
            email=entry.email,
            role=entry.role,
            status=STATUS_ACTIVE,
            invited_at=entry.invited_at,
            accepted_at=now_iso(self._clock),
            sub_user_id=self._identity.user_id,
        )
        roster[index] = accepted
        self._directory.update_user(owner_id, {FIELD_SUB_USERS: [item.to_dict() for item in roster]})
        self._directory.update_user(
            self._identity.user_id,
            {FIELD_PARENT_USER: owner_id, FIELD_ROLE: accepted.role.value},
        )
        role = UserRole.delegated(accepted.role, self._identity.user_id, owner_id)
        self._set_role(role)
        return role

    def reject_invitation(self, owner_id: str) -> bool:
        """Quita la invitación pendiente del roster del propietario; las ya aceptadas no se tocan."""
        owner = self._directory.get_user(owner_id)
        if owner is None:
            raise BusinessError("Usuario principal no encontrado")
        roster = _roster(owner)
        remaining = [
            entry
            for entry in roster
            if not (entry.status == STATUS_PENDING and _same_email(entry.email, self._identity.email))
        ]
        if len(remaining) == len(roster):
            return False
        self._directory.update_user(owner_id, {FIELD_SUB_USERS: [entry.to_dict() for entry in remaining]})
        logger.info("Invitación rechazada", extra={"extra": {"owner_id": owner_id}})
        return True

    def remove_sub_user(self, email: str) -> bool:
        self._require_owner()
        roster = self.list_sub_users()
        remaining = [entry for entry in roster if not _same_email(entry.email, email)]
        if len(remaining) == len(roster):
            return False
        self._directory.update_user(self._identity.user_id, {FIELD_SUB_USERS: [entry.to_dict() for entry in remaining]})
        for user_id in self._directory.find_user_ids_by_email(email):
            user = self._directory.get_user(user_id) or {}
            if user.get(FIELD_PARENT_USER) == self._identity.user_id:
                self._directory.update_user(user_id, {FIELD_PARENT_USER: None, FIELD_ROLE: None})
        return True

    # -- internos ------------------------------------------------------------------

    def _require_owner(self) -> None:
        if self._role.is_delegated:
            raise DelegatedWriteBlocked("Solo el propietario puede gestionar aprobaciones y sub-usuarios")

    def _notify(self, message: str, severity: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(message, severity)
