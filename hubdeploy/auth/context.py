from dataclasses import dataclass, field

from fastapi import HTTPException

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "admin": [
        "templates.read",
        "templates.write",
        "deployments.read",
        "deployments.write",
        "mappings.read",
        "mappings.write",
    ],
    "operator": [
        "templates.read",
        "deployments.read",
        "deployments.write",
        "mappings.read",
        "mappings.write",
    ],
    "viewer": [
        "templates.read",
        "deployments.read",
        "mappings.read",
    ],
}


@dataclass
class AuthContext:
    user_id: str
    role: str
    permissions: list[str] = field(default_factory=list)

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def assert_permission(self, permission: str) -> None:
        if permission not in self.permissions:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
