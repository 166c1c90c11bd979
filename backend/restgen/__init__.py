from restgen.auth import Identity, TokenService
from restgen.compiler import ListParams, compile_model
from restgen.errors import (
    AuthenticationError,
    AuthorizationError,
    RestgenError,
    StorageError,
    ValidationError,
)
from restgen.main import create_app
from restgen.schema import (
    ModelDescription,
    RawField,
    RoleRequirements,
    describe,
    describe_fields,
    relation,
    sensitive,
)

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "Identity",
    "ListParams",
    "ModelDescription",
    "RawField",
    "RestgenError",
    "RoleRequirements",
    "StorageError",
    "TokenService",
    "ValidationError",
    "compile_model",
    "create_app",
    "describe",
    "describe_fields",
    "relation",
    "sensitive",
]
