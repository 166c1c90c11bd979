"""Compile a ``ModelDescription`` into DDL and parameterized statements.

Only identifiers taken from the validated description are interpolated into
SQL text, plus escaped literals for the model's own column defaults in DDL.
Every caller-supplied value travels as a bound parameter.
"""

import logging
import math
from collections.abc import Mapping
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict

from restgen.errors import ValidationError
from restgen.schema import (
    FieldDescriptor,
    FieldKind,
    IdStrategy,
    ModelDescription,
    StorageType,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
# Largest value a signed 64-bit INTEGER bind can hold.
MAX_SQL_INT = 2**63 - 1


class Dialect(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    placeholder: str
    autoincrement_key: str
    uuid_key: str
    timestamp_type: str


DIALECTS: dict[str, Dialect] = {
    "sqlite": Dialect(
        name="sqlite",
        placeholder="?",
        autoincrement_key="INTEGER PRIMARY KEY AUTOINCREMENT",
        uuid_key="TEXT PRIMARY KEY DEFAULT (lower(hex(randomblob(16))))",
        timestamp_type="TEXT",
    ),
    "postgresql": Dialect(
        name="postgresql",
        placeholder="%s",
        autoincrement_key="SERIAL PRIMARY KEY",
        uuid_key="TEXT PRIMARY KEY DEFAULT (gen_random_uuid()::text)",
        timestamp_type="TIMESTAMP",
    ),
}


def get_dialect(name: str | Dialect) -> Dialect:
    if isinstance(name, Dialect):
        return name
    try:
        return DIALECTS[name]
    except KeyError:
        raise ValidationError(f"Unsupported SQL dialect: {name}") from None


def quote(identifier: str) -> str:
    return f'"{identifier}"'


def _text(field: FieldDescriptor) -> str:
    if field.storage == StorageType.TEXT:
        return quote(field.name)
    return f"CAST({quote(field.name)} AS TEXT)"


def _literal(value: Any) -> str | None:
    """Render a scalar default as a SQL literal, or ``None`` if it has no safe form."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value) if math.isfinite(value) else None
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return None


class Statement(NamedTuple):
    """A SQL template and the field names bound to its placeholders, in order."""

    sql: str
    binds: tuple[str, ...]

    def bind(self, values: Mapping[str, Any]) -> tuple[Any, ...]:
        return tuple(values.get(name) for name in self.binds)


class Query(NamedTuple):
    """A ready-to-run statement with concrete parameters."""

    sql: str
    params: tuple[Any, ...]


class ListParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    order_by: str | None = None
    order_dir: str = "asc"
    search: str | None = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def descending(self) -> bool:
        return self.order_dir == "desc"

    @classmethod
    def parse(
        cls,
        page: Any = None,
        limit: Any = None,
        order_by: Any = None,
        order_dir: Any = None,
        search: Any = None,
        default_limit: int = DEFAULT_LIMIT,
    ) -> "ListParams":
        """Normalise raw query-string values. Never raises."""
        search = str(search).strip() if search is not None else ""
        limit = min(_positive_int(limit, default_limit), MAX_SQL_INT)
        # Past this page the offset no longer fits a bind; the result is empty anyway.
        page = min(_positive_int(page, DEFAULT_PAGE), MAX_SQL_INT // limit + 1)
        return cls(
            page=page,
            limit=limit,
            order_by=str(order_by) if order_by else None,
            order_dir="desc" if str(order_dir or "").lower() == "desc" else "asc",
            search=search or None,
        )


def _positive_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(number, 1)


class CompiledStatementSet:
    """All statements for one entity, built once at registration."""

    def __init__(self, model: ModelDescription, dialect: Dialect):
        self.model = model
        self.dialect = dialect
        self.table = quote(model.table)
        self.key = quote(model.id_field)
        self.ddl = self._ddl()
        self.insert = self._insert()
        self.update = self._update()
        self.delete = Statement(
            f"DELETE FROM {self.table} WHERE {self.key} = {self.dialect.placeholder}",
            (model.id_field,),
        )
        self.select_one = Statement(
            f"SELECT * FROM {self.table} WHERE {self.key} = {self.dialect.placeholder}",
            (model.id_field,),
        )

    def _column_ddl(self, field: FieldDescriptor) -> str:
        name = quote(field.name)
        if field.kind == FieldKind.PRIMARY_KEY:
            if self.model.id_strategy == IdStrategy.UUID:
                return f"{name} {self.dialect.uuid_key}"
            return f"{name} {self.dialect.autoincrement_key}"
        if field.is_timestamp:
            return f"{name} {self.dialect.timestamp_type} DEFAULT CURRENT_TIMESTAMP"
        clause = f"{name} {field.storage.value}"
        if field.required:
            clause += " NOT NULL"
        else:
            literal = _literal(field.default)
            if literal is not None:
                clause += f" DEFAULT {literal}"
        if field.kind == FieldKind.RELATION:
            rel = self.model.relation
            clause += f" REFERENCES {quote(rel.parent_table)}({quote(rel.parent_key)})"
        return clause

    def _ddl(self) -> str:
        columns = ", ".join(self._column_ddl(f) for f in self.model.fields)
        return f"CREATE TABLE IF NOT EXISTS {self.table} ({columns})"

    def _insert(self) -> Statement:
        names = [f.name for f in self.model.insert_fields]
        if names:
            columns = ", ".join(quote(n) for n in names)
            placeholders = ", ".join(self.dialect.placeholder for _ in names)
            sql = f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {self.table} DEFAULT VALUES"
        return Statement(f"{sql} RETURNING *", tuple(names))

    def _update(self) -> Statement:
        names = [f.name for f in self.model.update_fields]
        clauses = [f"{quote(n)} = {self.dialect.placeholder}" for n in names]
        if self.model.has_updated_timestamp:
            clauses.append(f'{quote("updated_at")} = CURRENT_TIMESTAMP')
        if not clauses:
            clauses.append(f"{self.key} = {self.key}")
        sql = (
            f"UPDATE {self.table} SET {', '.join(clauses)} "
            f"WHERE {self.key} = {self.dialect.placeholder} RETURNING *"
        )
        return Statement(sql, (*names, self.model.id_field))

    def order_column(self, requested: str | None) -> str:
        """Return a known, non-sensitive column for ORDER BY, defaulting to the key."""
        hidden = self.model.sensitive_fields
        if requested and requested in self.model.field_names and requested not in hidden:
            return requested
        return self.model.id_field

    def _where(self, params: ListParams, parent_id: Any) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        binds: list[Any] = []
        ph = self.dialect.placeholder

        if parent_id is not None:
            if self.model.relation is None:
                raise ValidationError(f"{self.model.table} has no relation field")
            clauses.append(f"{quote(self.model.relation.field)} = {ph}")
            binds.append(parent_id)

        if params.search:
            searchable = self.model.searchable_fields
            if searchable:
                pattern = f"%{params.search}%"
                group = " OR ".join(f"{_text(f)} LIKE {ph}" for f in searchable)
                clauses.append(f"({group})")
                binds.extend(pattern for _ in searchable)
            else:
                clauses.append("1 = 0")

        if not clauses:
            return "", binds
        return " WHERE " + " AND ".join(clauses), binds

    def list_query(self, params: ListParams, parent_id: Any = None) -> Query:
        where, binds = self._where(params, parent_id)
        column = quote(self.order_column(params.order_by))
        direction = "DESC" if params.descending else "ASC"
        ph = self.dialect.placeholder
        sql = (
            f"SELECT * FROM {self.table}{where} "
            f"ORDER BY {column} {direction} LIMIT {ph} OFFSET {ph}"
        )
        return Query(sql, (*binds, params.limit, params.offset))

    def count_query(self, params: ListParams, parent_id: Any = None) -> Query:
        where, binds = self._where(params, parent_id)
        return Query(f"SELECT COUNT(*) FROM {self.table}{where}", tuple(binds))


def compile_model(
    model: ModelDescription, dialect: str | Dialect = "sqlite"
) -> CompiledStatementSet:
    if not model.fields:
        raise ValidationError(f"Model {model.table!r} declares no fields")
    if not any(f.kind == FieldKind.PRIMARY_KEY for f in model.fields):
        raise ValidationError(f"Model {model.table!r} has no primary key")
    compiled = CompiledStatementSet(model, get_dialect(dialect))
    logger.debug("Compiled %s: %s", model.table, compiled.ddl)
    return compiled
