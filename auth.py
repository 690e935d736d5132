from dataclasses import dataclass

import config


class PermissionDenied(Exception):
    pass


@dataclass(frozen=True)
class UserSession:
    """Who is acting. Passed explicitly into views and service calls."""
    username: str
    role: str
    name: str = ""

    @property
    def is_admin(self):
        return self.role == config.ROLE_ADMIN

    @property
    def display_name(self):
        return self.name or self.username


def require_admin(user, action):
    if user is None or not user.is_admin:
        who = user.username if user else "anonymous"
        raise PermissionDenied(f"{who} is not allowed to {action}: admin access required")
