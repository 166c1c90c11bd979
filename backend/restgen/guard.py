import logging
from collections.abc import Iterable
from enum import StrEnum
from typing import Protocol

from restgen.errors import AuthorizationError
from restgen.schema import RoleRequirements

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class Operation(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class HasRoles(Protocol):
    roles: Iterable[str]


def requirement_for(roles: RoleRequirements, operation: Operation) -> str | None:
    """Minimal role for an operation. Create shares the update requirement."""
    if operation == Operation.READ:
        return roles.read
    if operation == Operation.DELETE:
        return roles.delete
    return roles.update


def authorize(requirement: str | None, identity: HasRoles) -> bool:
    if requirement is None:
        return True
    held = set(identity.roles)
    return ADMIN_ROLE in held or requirement in held


def ensure_authorized(
    roles: RoleRequirements, operation: Operation, identity: HasRoles, table: str = ""
) -> None:
    """Raise ``AuthorizationError`` unless the identity may run the operation."""
    requirement = requirement_for(roles, operation)
    if not authorize(requirement, identity):
        logger.info(
            "authz deny op=%s table=%s required=%s roles=%s",
            operation,
            table,
            requirement,
            sorted(identity.roles),
        )
        raise AuthorizationError("Insufficient privileges")
