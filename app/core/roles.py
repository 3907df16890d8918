from __future__ import annotations

from sqlalchemy.orm import Session

from app.models import Role, RoleRecord


DEFAULT_ROLE_IDS: dict[Role, int] = {
    Role.STUDENT: 1,
    Role.TEACHER: 2,
    Role.ACCOUNTANT: 3,
    Role.MANAGER: 4,
    Role.ADMIN: 5,
}

ELEVATED_ROLES = frozenset({Role.MANAGER, Role.ADMIN})


class RoleRegistry:
    """Two-way lookup between the Role enum and the ids stored in ``roles``.

    Built from the roles table (seeded with DEFAULT_ROLE_IDS) and handed to
    the code that needs a foreign key value. Everything else compares roles
    through the enum.
    """

    def __init__(self, ids_by_role: dict[Role, int]):
        self._ids_by_role = dict(ids_by_role)
        self._roles_by_id = {role_id: role for role, role_id in self._ids_by_role.items()}

    @classmethod
    def from_db(cls, db: Session) -> 'RoleRegistry':
        ids_by_role: dict[Role, int] = {}
        for row in db.query(RoleRecord).all():
            role = parse_role(row.role_name)
            if role is not None:
                ids_by_role[role] = int(row.id)
        return cls(ids_by_role)

    def id_for(self, role: Role) -> int:
        try:
            return self._ids_by_role[role]
        except KeyError as exc:
            raise LookupError(f'Role {role.value} is not registered') from exc

    def role_for(self, role_id: int | None) -> Role | None:
        if role_id is None:
            return None
        return self._roles_by_id.get(int(role_id))


def parse_role(value: str | Role | None) -> Role | None:
    if isinstance(value, Role):
        return value
    clean = (value or '').strip().lower()
    try:
        return Role(clean)
    except ValueError:
        return None
