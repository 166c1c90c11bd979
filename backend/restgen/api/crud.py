"""Generated CRUD routes for a registered ``ModelDescription``."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from pydantic import BaseModel, create_model
from sqlmodel import Session

from restgen.api.deps import get_identity
from restgen.auth import Identity
from restgen.compiler import CompiledStatementSet, ListParams, compile_model
from restgen.database import get_session
from restgen.errors import ValidationError
from restgen.guard import Operation, ensure_authorized
from restgen.relations import NestedRoute, nested_list_query, resolve_nested_route
from restgen.schema import IdStrategy, ModelDescription, StorageType
from restgen.storage import EntityStore, apply_ddl

logger = logging.getLogger(__name__)

_PY_TYPES = {
    StorageType.INTEGER: int,
    StorageType.REAL: float,
    StorageType.TEXT: str,
}


class Resource:
    """Everything mounted for one entity."""

    def __init__(
        self,
        model: ModelDescription,
        compiled: CompiledStatementSet,
        nested: NestedRoute | None,
    ):
        self.model = model
        self.compiled = compiled
        self.nested = nested
        self.payload = payload_model(model)

    @property
    def key_type(self) -> type:
        if self.model.id_strategy == IdStrategy.UUID:
            return str
        return int

    @property
    def parent_key_type(self) -> type:
        field = self.model.get(self.model.relation.field)
        return _PY_TYPES[field.storage]

    def public(self, row: dict[str, Any]) -> dict[str, Any]:
        hidden = self.model.sensitive_fields
        return {k: v for k, v in row.items() if k not in hidden}

    def endpoints(self) -> list[tuple[str, str]]:
        table = self.model.table
        routes = [
            ("GET", f"/{table}"),
            ("GET", f"/{table}/{{id}}"),
            ("POST", f"/{table}"),
            ("PUT", f"/{table}/{{id}}"),
            ("DELETE", f"/{table}/{{id}}"),
        ]
        if self.nested:
            routes.append(("GET", self.nested.path))
        return routes


def payload_model(model: ModelDescription) -> type[BaseModel]:
    """Request body schema: every client-bound field, typed by storage type."""
    fields: dict[str, Any] = {}
    for field in model.insert_fields:
        py_type = _PY_TYPES[field.storage]
        if field.required:
            fields[field.name] = (py_type, ...)
        else:
            fields[field.name] = (py_type | None, field.default)
    return create_model(f"{model.table.title()}Payload", **fields)


def _list_params(
    request: Request,
    page: str | None,
    limit: str | None,
    order_by: str | None,
    order_dir: str | None,
    search: str | None,
) -> ListParams:
    return ListParams.parse(
        page=page,
        limit=limit,
        order_by=order_by,
        order_dir=order_dir,
        search=search,
        default_limit=request.app.state.settings.default_page_size,
    )


def crud_router(resource: Resource) -> APIRouter:
    model = resource.model
    compiled = resource.compiled
    table = model.table
    Payload = resource.payload
    Key = resource.key_type
    router = APIRouter(tags=[table])

    @router.get(f"/{table}")
    def list_items(
        request: Request,
        response: Response,
        page: str | None = Query(None),
        limit: str | None = Query(None),
        order_by: str | None = Query(None),
        order_dir: str | None = Query(None),
        search: str | None = Query(None),
        identity: Identity = Depends(get_identity),
        session: Session = Depends(get_session),
    ):
        ensure_authorized(model.roles, Operation.READ, identity, table)
        params = _list_params(request, page, limit, order_by, order_dir, search)
        store = EntityStore(compiled, session)
        response.headers["X-Total-Count"] = str(store.count(params))
        return [resource.public(row) for row in store.find(params)]

    @router.get(f"/{table}/{{item_id}}")
    def get_item(
        item_id: Key,
        identity: Identity = Depends(get_identity),
        session: Session = Depends(get_session),
    ):
        ensure_authorized(model.roles, Operation.READ, identity, table)
        row = EntityStore(compiled, session).get(item_id)
        if row is None:
            raise HTTPException(status_code=404, detail="Item not found")
        return resource.public(row)

    @router.post(f"/{table}", status_code=201)
    def create_item(
        body: Payload,
        identity: Identity = Depends(get_identity),
        session: Session = Depends(get_session),
    ):
        ensure_authorized(model.roles, Operation.CREATE, identity, table)
        row = EntityStore(compiled, session).create(body.model_dump())
        return resource.public(row)

    @router.put(f"/{table}/{{item_id}}")
    def update_item(
        item_id: Key,
        body: Payload,
        identity: Identity = Depends(get_identity),
        session: Session = Depends(get_session),
    ):
        ensure_authorized(model.roles, Operation.UPDATE, identity, table)
        row = EntityStore(compiled, session).update(item_id, body.model_dump())
        if row is None:
            raise HTTPException(status_code=404, detail="Item not found")
        return resource.public(row)

    @router.delete(f"/{table}/{{item_id}}")
    def delete_item(
        item_id: Key,
        identity: Identity = Depends(get_identity),
        session: Session = Depends(get_session),
    ):
        ensure_authorized(model.roles, Operation.DELETE, identity, table)
        if not EntityStore(compiled, session).delete(item_id):
            raise HTTPException(status_code=404, detail="Item not found")
        return {"detail": "Item deleted"}

    if resource.nested is not None:
        ParentKey = resource.parent_key_type

        @router.get(resource.nested.path)
        def list_children(
            parent_id: ParentKey,
            request: Request,
            response: Response,
            page: str | None = Query(None),
            limit: str | None = Query(None),
            order_by: str | None = Query(None),
            order_dir: str | None = Query(None),
            search: str | None = Query(None),
            identity: Identity = Depends(get_identity),
            session: Session = Depends(get_session),
        ):
            ensure_authorized(model.roles, Operation.READ, identity, table)
            params = _list_params(request, page, limit, order_by, order_dir, search)
            store = EntityStore(compiled, session)
            response.headers["X-Total-Count"] = str(store.count(params, parent_id))
            query = nested_list_query(compiled, parent_id, params)
            return [resource.public(row) for row in store.fetch_all(query)]

    return router


def register(app: FastAPI, model: ModelDescription) -> Resource:
    """Compile a model, create its table and mount its routes on ``app``."""
    resources: dict[str, Resource] = app.state.resources
    if model.table in resources:
        raise ValidationError(f"Model {model.table!r} is already registered")

    compiled = compile_model(model, app.state.dialect)
    apply_ddl(app.state.engine, compiled)
    resource = Resource(model, compiled, resolve_nested_route(compiled))
    app.include_router(crud_router(resource), prefix=app.state.settings.api_prefix)
    resources[model.table] = resource

    logger.info("Registered %s", model.table)
    prefix = app.state.settings.api_prefix
    for method, path in resource.endpoints():
        logger.info("  %-6s %s%s", method, prefix, path)
    return resource
