from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Carried through the request via FastAPI's dependency system.

        user_id: subject from JWT.  For students this is also the identity
                 attempts are keyed on (see student_key).
        roles:   platform roles (admin, teacher, student)
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str]) -> bool:
        return bool(self.roles & roles)

    def is_platform_admin(self) -> bool:
        return "admin" in self.roles

    @property
    def student_key(self) -> str:
        # Subjects are often e-mail addresses; normalize the way
        # registration normalizes e-mails so case variants collide.
        return self.user_id.strip().lower()
