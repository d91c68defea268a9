"""
context.py — Explicit session-scoped state.

The cart and checkout operations never read identity from global state: the API
layer builds a `SessionContext` per request (from the headers issued by the
authentication layer) and passes it to every call.
"""

from dataclasses import dataclass

from .models import Role


@dataclass(frozen=True)
class SessionContext:
    user_id: int
    role: Role = Role.VISITOR

    @property
    def log_prefix(self):
        return f"[User: {self.user_id}]"
