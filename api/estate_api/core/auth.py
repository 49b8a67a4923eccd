from dataclasses import dataclass

ROLE_SCOPES: dict[str, set[str]] = {
    "user": {"posts:write", "notifications:read"},
    "employee": {"posts:write", "notifications:read", "dashboard:read", "posts:manage"},
    "admin": {
        "posts:write",
        "notifications:read",
        "dashboard:read",
        "posts:manage",
        "payments:manage",
    },
}


@dataclass(slots=True)
class Principal:
    subject: str
    scopes: set[str]
    role: str = "user"

    @property
    def actor_id(self) -> str:
        return self.subject

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")


def scopes_for_role(role: str) -> set[str]:
    return set(ROLE_SCOPES.get(role, ROLE_SCOPES["user"]))
