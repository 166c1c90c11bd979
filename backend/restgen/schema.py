"""Model descriptions: the single source of field metadata for an entity.

A model is declared either as a pydantic class and passed to ``describe`` or
as a list of ``RawField`` declarations passed to ``describe_fields``. Either
way the result is an immutable ``ModelDescription`` that feeds DDL, CRUD and
list-query construction.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from restgen.errors import ValidationError

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

CREATED_AT = "created_at"
UPDATED_AT = "updated_at"

_INTEGER_TOKENS = {"int", "integer", "bool", "boolean", "i8", "i16", "i32", "i64", "bigint", "smallint"}
_REAL_TOKENS = {"float", "real", "double", "decimal", "numeric", "f32", "f64"}


class FieldKind(StrEnum):
    PRIMARY_KEY = "primary_key"
    CREATED_TIMESTAMP = "created_timestamp"
    UPDATED_TIMESTAMP = "updated_timestamp"
    RELATION = "relation"
    SCALAR = "scalar"


class StorageType(StrEnum):
    INTEGER = "INTEGER"
    REAL = "REAL"
    TEXT = "TEXT"


class IdStrategy(StrEnum):
    AUTOINCREMENT = "autoincrement"
    UUID = "uuid"


class RawField(BaseModel):
    """One field as declared, before classification."""

    model_config = ConfigDict(frozen=True)

    name: str
    type_name: str = "str"
    relation: dict[str, Any] | None = None
    sensitive: bool = False
    required: bool = True
    default: Any = None


class FieldDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    kind: FieldKind
    storage: StorageType
    exclude_insert: bool = False
    exclude_update: bool = False
    sensitive: bool = False
    required: bool = True
    default: Any = None

    @property
    def is_timestamp(self) -> bool:
        return self.kind in (FieldKind.CREATED_TIMESTAMP, FieldKind.UPDATED_TIMESTAMP)


class RelationDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    parent_table: str
    parent_key: str


class RoleRequirements(BaseModel):
    """Minimal role per operation. ``None`` leaves the operation unrestricted."""

    model_config = ConfigDict(frozen=True)

    read: str | None = None
    update: str | None = None
    delete: str | None = None


class ModelDescription(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str
    fields: tuple[FieldDescriptor, ...]
    relation: RelationDescriptor | None = None
    roles: RoleRequirements = RoleRequirements()
    id_field: str = "id"
    id_strategy: IdStrategy = IdStrategy.AUTOINCREMENT

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def primary_key(self) -> FieldDescriptor:
        return next(f for f in self.fields if f.kind == FieldKind.PRIMARY_KEY)

    @property
    def insert_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if not f.exclude_insert]

    @property
    def update_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if not f.exclude_update]

    @property
    def searchable_fields(self) -> list[FieldDescriptor]:
        return [
            f for f in self.fields if f.kind == FieldKind.SCALAR and not f.sensitive
        ]

    @property
    def sensitive_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.sensitive]

    @property
    def has_updated_timestamp(self) -> bool:
        return any(f.kind == FieldKind.UPDATED_TIMESTAMP for f in self.fields)

    def get(self, name: str) -> FieldDescriptor | None:
        return next((f for f in self.fields if f.name == name), None)


def _check_identifier(name: str, what: str) -> None:
    if not IDENTIFIER_RE.match(name or ""):
        raise ValidationError(f"Invalid {what} name: {name!r}")


def infer_storage_type(type_name: str) -> StorageType:
    tokens = set(re.findall(r"[a-z0-9]+", type_name.lower()))
    if tokens & _INTEGER_TOKENS:
        return StorageType.INTEGER
    if tokens & _REAL_TOKENS:
        return StorageType.REAL
    return StorageType.TEXT


def parse_reference(references: str) -> tuple[str, str] | None:
    """Split ``"parent.column"`` into its two parts, or ``None`` if malformed."""
    parts = references.split(".")
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]


def _relation_target(raw: RawField) -> tuple[str, str] | None:
    if not raw.relation:
        return None
    foreign_key = raw.relation.get("foreign_key")
    references = raw.relation.get("references")
    if not foreign_key or not references:
        return None
    target = parse_reference(str(references))
    if target is None:
        logger.warning(
            "Ignoring relation on %s: reference %r is not 'table.column'",
            raw.name,
            references,
        )
    return target


def classify_fields(
    raw_fields: Iterable[RawField],
    id_field: str = "id",
    id_strategy: IdStrategy = IdStrategy.AUTOINCREMENT,
) -> tuple[list[FieldDescriptor], RelationDescriptor | None]:
    """Assign a kind and storage type to every raw field, in declaration order."""
    fields: list[FieldDescriptor] = []
    relation: RelationDescriptor | None = None
    seen: set[str] = set()

    for raw in raw_fields:
        _check_identifier(raw.name, "field")
        if raw.name in seen:
            raise ValidationError(f"Duplicate field: {raw.name}")
        seen.add(raw.name)

        if raw.name == id_field:
            if any(f.kind == FieldKind.PRIMARY_KEY for f in fields):
                raise ValidationError(f"More than one primary key: {raw.name}")
            storage = (
                StorageType.TEXT
                if id_strategy == IdStrategy.UUID
                else StorageType.INTEGER
            )
            fields.append(
                FieldDescriptor(
                    name=raw.name,
                    kind=FieldKind.PRIMARY_KEY,
                    storage=storage,
                    exclude_insert=True,
                    exclude_update=True,
                    required=False,
                )
            )
            continue

        if raw.name in (CREATED_AT, UPDATED_AT):
            kind = (
                FieldKind.CREATED_TIMESTAMP
                if raw.name == CREATED_AT
                else FieldKind.UPDATED_TIMESTAMP
            )
            fields.append(
                FieldDescriptor(
                    name=raw.name,
                    kind=kind,
                    storage=StorageType.TEXT,
                    exclude_insert=True,
                    exclude_update=True,
                    required=False,
                )
            )
            continue

        storage = infer_storage_type(raw.type_name)
        target = _relation_target(raw)
        if target is not None:
            if relation is not None:
                raise ValidationError(
                    f"More than one relation field: {relation.field}, {raw.name}"
                )
            parent_table, parent_key = target
            _check_identifier(parent_table, "table")
            _check_identifier(parent_key, "column")
            relation = RelationDescriptor(
                field=raw.name, parent_table=parent_table, parent_key=parent_key
            )
            kind = FieldKind.RELATION
        else:
            kind = FieldKind.SCALAR

        fields.append(
            FieldDescriptor(
                name=raw.name,
                kind=kind,
                storage=storage,
                sensitive=raw.sensitive,
                required=raw.required,
                default=None if raw.required else raw.default,
            )
        )

    return fields, relation


def describe_fields(
    table: str,
    raw_fields: Iterable[RawField],
    *,
    id_field: str = "id",
    roles: RoleRequirements | None = None,
    id_strategy: IdStrategy | str = IdStrategy.AUTOINCREMENT,
) -> ModelDescription:
    _check_identifier(table, "table")
    id_strategy = IdStrategy(id_strategy)
    fields, relation = classify_fields(raw_fields, id_field, id_strategy)
    if not fields:
        raise ValidationError(f"Model {table!r} declares no fields")
    if not any(f.kind == FieldKind.PRIMARY_KEY for f in fields):
        raise ValidationError(f"Model {table!r} has no primary key {id_field!r}")
    return ModelDescription(
        table=table,
        fields=tuple(fields),
        relation=relation,
        roles=roles or RoleRequirements(),
        id_field=id_field,
        id_strategy=id_strategy,
    )


def _type_name(annotation: Any) -> str:
    if isinstance(annotation, type):
        return annotation.__name__
    return str(annotation)


def raw_fields_of(model_cls: type[BaseModel]) -> list[RawField]:
    """Read raw field declarations off a pydantic model class."""
    raw: list[RawField] = []
    for name, info in model_cls.model_fields.items():
        extra = info.json_schema_extra if isinstance(info.json_schema_extra, Mapping) else {}
        relation = extra.get("relation")
        required = info.is_required()
        if relation is not None:
            relation = {**relation, "foreign_key": relation.get("foreign_key") or name}
        raw.append(
            RawField(
                name=name,
                type_name=_type_name(info.annotation),
                relation=relation,
                sensitive=bool(extra.get("sensitive", False)),
                required=required,
                default=None if required else info.get_default(call_default_factory=True),
            )
        )
    return raw


def describe(
    model_cls: type[BaseModel],
    table: str | None = None,
    *,
    id_field: str = "id",
    roles: RoleRequirements | None = None,
    id_strategy: IdStrategy | str = IdStrategy.AUTOINCREMENT,
) -> ModelDescription:
    """Build a ``ModelDescription`` from a pydantic model class.

    The table name defaults to the lower-cased class name, so ``class Post``
    maps to table ``post``.
    """
    return describe_fields(
        table or model_cls.__name__.lower(),
        raw_fields_of(model_cls),
        id_field=id_field,
        roles=roles,
        id_strategy=id_strategy,
    )


def relation(references: str, foreign_key: str | None = None, **kwargs: Any) -> Any:
    """Field helper declaring a foreign key, e.g. ``post_id: int = relation("post.id")``."""
    return Field(
        json_schema_extra={
            "relation": {"foreign_key": foreign_key, "references": references}
        },
        **kwargs,
    )


def sensitive(**kwargs: Any) -> Any:
    """Field helper excluding a field from search and from responses."""
    return Field(json_schema_extra={"sensitive": True}, **kwargs)
