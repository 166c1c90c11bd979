import logging
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from restgen.compiler import CompiledStatementSet, ListParams, Query
from restgen.errors import StorageError

logger = logging.getLogger(__name__)


def _storage_error(e: SQLAlchemyError) -> StorageError:
    message = str(getattr(e, "orig", None) or e)
    logger.error("Storage error: %s", message)
    return StorageError(message)


def apply_ddl(engine: Engine, compiled: CompiledStatementSet) -> None:
    """Create the entity table if it does not exist yet."""
    try:
        with engine.begin() as conn:
            conn.exec_driver_sql(compiled.ddl)
    except SQLAlchemyError as e:
        raise _storage_error(e) from e
    logger.info("Table %s ready", compiled.model.table)


class EntityStore:
    """Runs one compiled statement per call. Each write commits on its own."""

    def __init__(self, compiled: CompiledStatementSet, session: Session):
        self.compiled = compiled
        self.session = session

    def _execute(self, sql: str, params: tuple[Any, ...]):
        try:
            return self.session.connection().exec_driver_sql(sql, params)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise _storage_error(e) from e

    def _write_returning(self, sql: str, params: tuple[Any, ...]) -> dict | None:
        result = self._execute(sql, params)
        try:
            row = result.mappings().first()
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise _storage_error(e) from e
        return dict(row) if row is not None else None

    def create(self, values: dict[str, Any]) -> dict:
        stmt = self.compiled.insert
        return self._write_returning(stmt.sql, stmt.bind(values))

    def get(self, key: Any) -> dict | None:
        stmt = self.compiled.select_one
        row = self._execute(stmt.sql, (key,)).mappings().first()
        return dict(row) if row is not None else None

    def update(self, key: Any, values: dict[str, Any]) -> dict | None:
        stmt = self.compiled.update
        bound = {**values, self.compiled.model.id_field: key}
        return self._write_returning(stmt.sql, stmt.bind(bound))

    def delete(self, key: Any) -> bool:
        stmt = self.compiled.delete
        result = self._execute(stmt.sql, (key,))
        deleted = result.rowcount
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise _storage_error(e) from e
        return deleted > 0

    def fetch_all(self, query: Query) -> list[dict]:
        return [dict(row) for row in self._execute(query.sql, query.params).mappings()]

    def find(self, params: ListParams, parent_id: Any = None) -> list[dict]:
        return self.fetch_all(self.compiled.list_query(params, parent_id))

    def count(self, params: ListParams, parent_id: Any = None) -> int:
        query = self.compiled.count_query(params, parent_id)
        return self._execute(query.sql, query.params).scalar_one()
