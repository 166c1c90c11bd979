from typing import Any

from pydantic import BaseModel, ConfigDict

from restgen.compiler import CompiledStatementSet, ListParams, Query


class NestedRoute(BaseModel):
    """``/{parent_table}/{parent_id}/{child_table}`` listing for one relation."""

    model_config = ConfigDict(frozen=True)

    parent_table: str
    child_table: str
    foreign_key: str

    @property
    def path(self) -> str:
        return f"/{self.parent_table}/{{parent_id}}/{self.child_table}"


def resolve_nested_route(compiled: CompiledStatementSet) -> NestedRoute | None:
    relation = compiled.model.relation
    if relation is None:
        return None
    return NestedRoute(
        parent_table=relation.parent_table,
        child_table=compiled.model.table,
        foreign_key=relation.field,
    )


def nested_list_query(
    compiled: CompiledStatementSet, parent_id: Any, params: ListParams
) -> Query:
    """The entity list query with the parent filter bound first."""
    return compiled.list_query(params, parent_id=parent_id)
