"""Request context passed explicitly to every service call.

Terminal, branch and actor used to live in browser storage; here they come from
the bearer token and nothing else.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Header

from pos_common.errors import PermissionDeniedError
from pos_common.security import bearer_token, decode_access_token

SUPER_ADMIN = "super-admin"
BRANCH_ADMIN = "branch-admin"
ACCOUNTANT = "accountant"
ORDER_TAKER = "order-taker"
KITCHEN = "kitchen"

ROLES = (SUPER_ADMIN, BRANCH_ADMIN, ACCOUNTANT, ORDER_TAKER, KITCHEN)


@dataclass(frozen=True)
class RequestContext:
    actor_id: int
    role: str
    branch_id: Optional[int] = None
    terminal: Optional[int] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN

    def scope_branch(self, requested: Optional[int] = None) -> Optional[int]:
        """Branch filter for list queries; only super-admins may choose one (or none)."""
        if self.is_super_admin:
            return requested
        return self.branch_id

    def can_see(self, branch_id: Optional[int]) -> bool:
        return self.is_super_admin or branch_id == self.branch_id


def context_from_claims(claims: dict) -> RequestContext:
    return RequestContext(
        actor_id=int(claims.get("id") or 0),
        role=claims.get("role") or "",
        branch_id=claims.get("branch_id"),
        terminal=claims.get("terminal"),
    )


def get_context(authorization: str = Header(None)) -> RequestContext:
    claims = decode_access_token(bearer_token(authorization))
    return context_from_claims(claims)


def require_roles(ctx: RequestContext, *roles: str):
    if ctx.is_super_admin:
        return
    if ctx.role not in roles:
        raise PermissionDeniedError("Forbidden: insufficient role")
