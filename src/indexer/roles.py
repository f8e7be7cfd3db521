"""
Role resolution.

Precedence: documentation tag > naming rules > exported function (helper)
> internal.
"""

import re
from typing import Iterable, Optional

from ..config import DEFAULT_FACTORY_TOKEN, DEFAULT_ROLE_RULES
from ..models import Role, RoleSource


class RoleRules:
    """Ordered naming-convention rules; the first match wins."""

    def __init__(
        self,
        rules: Iterable[tuple[str, str]] = DEFAULT_ROLE_RULES,
        factory_token: str = DEFAULT_FACTORY_TOKEN,
    ):
        self.factory_token = factory_token
        self.rules: list[tuple[re.Pattern, Role]] = []
        for pattern, role in rules:
            parsed = Role.parse(role)
            if parsed is None:
                raise ValueError(f"Unknown role in role rule {pattern!r}: {role!r}")
            self.rules.append((re.compile(pattern), parsed))

    def infer(self, name: str, is_private: bool = False) -> Optional[Role]:
        """Role from naming conventions alone, None when nothing matches."""
        if is_private:
            return Role.INTERNAL
        if self.factory_token and name == self.factory_token:
            return Role.HELPER
        for pattern, role in self.rules:
            if pattern.search(name):
                return role
        return None

    def resolve(
        self,
        tagged: Optional[str],
        name: str,
        is_private: bool = False,
        is_exported_function: bool = False,
    ) -> tuple[Role, RoleSource]:
        role = Role.parse(tagged)
        if role is not None:
            return role, RoleSource.TAG
        role = self.infer(name, is_private)
        if role is not None:
            return role, RoleSource.HEURISTIC
        if is_exported_function:
            return Role.HELPER, RoleSource.HEURISTIC
        return Role.INTERNAL, RoleSource.DEFAULT
