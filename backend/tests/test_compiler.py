import pytest

from restgen.compiler import MAX_SQL_INT, ListParams, compile_model
from restgen.errors import ValidationError
from restgen.schema import (
    FieldDescriptor,
    FieldKind,
    ModelDescription,
    RawField,
    StorageType,
    describe_fields,
)

COMMENT_FIELDS = [
    RawField(name="id", type_name="int"),
    RawField(name="title", type_name="str"),
    RawField(name="score", type_name="float"),
    RawField(name="post_id", type_name="int", relation={"foreign_key": "post_id", "references": "post.id"}),
    RawField(name="password_hash", type_name="str", sensitive=True),
    RawField(name="created_at", type_name="str"),
    RawField(name="updated_at", type_name="str"),
]


@pytest.fixture
def compiled():
    return compile_model(describe_fields("comment", COMMENT_FIELDS))


def test_ddl(compiled):
    assert compiled.ddl == (
        'CREATE TABLE IF NOT EXISTS "comment" ('
        '"id" INTEGER PRIMARY KEY AUTOINCREMENT, '
        '"title" TEXT NOT NULL, '
        '"score" REAL NOT NULL, '
        '"post_id" INTEGER NOT NULL REFERENCES "post"("id"), '
        '"password_hash" TEXT NOT NULL, '
        '"created_at" TEXT DEFAULT CURRENT_TIMESTAMP, '
        '"updated_at" TEXT DEFAULT CURRENT_TIMESTAMP)'
    )


def test_insert(compiled):
    stmt = compiled.insert
    assert stmt.binds == ("title", "score", "post_id", "password_hash")
    assert stmt.sql == (
        'INSERT INTO "comment" ("title", "score", "post_id", "password_hash") '
        "VALUES (?, ?, ?, ?) RETURNING *"
    )
    assert stmt.sql.count("?") == len(stmt.binds)


def test_insert_bind_values_follow_declaration_order(compiled):
    values = {"post_id": 9, "title": "t", "id": 5, "created_at": "x", "score": 1.5, "password_hash": "h"}
    assert compiled.insert.bind(values) == ("t", 1.5, 9, "h")


def test_update(compiled):
    stmt = compiled.update
    assert stmt.binds == ("title", "score", "post_id", "password_hash", "id")
    assert stmt.sql == (
        'UPDATE "comment" SET "title" = ?, "score" = ?, "post_id" = ?, '
        '"password_hash" = ?, "updated_at" = CURRENT_TIMESTAMP '
        'WHERE "id" = ? RETURNING *'
    )
    assert stmt.sql.count("?") == len(compiled.model.update_fields) + 1


def test_update_without_timestamp():
    compiled = compile_model(
        describe_fields("tag", [RawField(name="id"), RawField(name="name")])
    )
    assert compiled.update.sql == 'UPDATE "tag" SET "name" = ? WHERE "id" = ? RETURNING *'


def test_delete_and_select_one(compiled):
    assert compiled.delete.sql == 'DELETE FROM "comment" WHERE "id" = ?'
    assert compiled.select_one.sql == 'SELECT * FROM "comment" WHERE "id" = ?'
    assert compiled.delete.bind({"id": 3}) == (3,)


def test_list_defaults(compiled):
    query = compiled.list_query(ListParams())
    assert query.sql == 'SELECT * FROM "comment" ORDER BY "id" ASC LIMIT ? OFFSET ?'
    assert query.params == (10, 0)


def test_list_bind_order(compiled):
    params = ListParams.parse(page=3, limit=5, search="foo", order_by="score", order_dir="desc")
    query = compiled.list_query(params, parent_id=42)
    assert query.sql == (
        'SELECT * FROM "comment" WHERE "post_id" = ? AND '
        '("title" LIKE ? OR CAST("score" AS TEXT) LIKE ?) '
        'ORDER BY "score" DESC LIMIT ? OFFSET ?'
    )
    assert query.params == (42, "%foo%", "%foo%", 5, 10)
    assert query.sql.count("?") == len(query.params)


def test_search_excludes_key_timestamps_relation_and_sensitive(compiled):
    query = compiled.list_query(ListParams.parse(search="x"))
    assert '"password_hash" LIKE' not in query.sql
    assert '"post_id" LIKE' not in query.sql
    assert '"id" LIKE' not in query.sql
    assert "created_at" not in query.sql


def test_search_without_searchable_fields_matches_nothing():
    compiled = compile_model(describe_fields("blob", [RawField(name="id")]))
    query = compiled.list_query(ListParams.parse(search="x"))
    assert "WHERE 1 = 0" in query.sql
    assert query.params == (10, 0)


@pytest.mark.parametrize("requested", ["nonexistent", "id; DROP TABLE comment", "password_hash", "", None])
def test_order_by_falls_back_to_primary_key(compiled, requested):
    query = compiled.list_query(ListParams.parse(order_by=requested))
    assert 'ORDER BY "id" ASC' in query.sql
    assert "DROP" not in query.sql


def test_search_term_is_never_interpolated(compiled):
    term = "'; DROP TABLE comment; --"
    query = compiled.list_query(ListParams.parse(search=term))
    assert term not in query.sql
    assert f"%{term}%" in query.params


@pytest.mark.parametrize(
    "raw, page, limit",
    [
        ({}, 1, 10),
        ({"page": "2", "limit": "10"}, 2, 10),
        ({"page": 0, "limit": 0}, 1, 1),
        ({"page": -4, "limit": -1}, 1, 1),
        ({"page": "abc", "limit": "1.5"}, 1, 10),
    ],
)
def test_list_params_parse(raw, page, limit):
    params = ListParams.parse(**raw)
    assert (params.page, params.limit) == (page, limit)
    assert params.offset == (page - 1) * limit


@pytest.mark.parametrize("raw", [{"page": 10**30}, {"limit": 10**30}, {"page": 10**30, "limit": 10**30}])
def test_list_params_stay_within_64_bit(raw):
    params = ListParams.parse(**raw)
    assert 1 <= params.limit <= MAX_SQL_INT
    assert 0 <= params.offset <= MAX_SQL_INT


@pytest.mark.parametrize("direction, expected", [("DESC", True), ("desc", True), ("asc", False), ("up", False), (None, False)])
def test_order_direction(direction, expected):
    assert ListParams.parse(order_dir=direction).descending is expected


def test_count_query(compiled):
    query = compiled.count_query(ListParams.parse(search="a", page=4), parent_id=1)
    assert query.sql.startswith('SELECT COUNT(*) FROM "comment" WHERE "post_id" = ?')
    assert query.params == (1, "%a%", "%a%")


def test_parent_filter_requires_relation():
    compiled = compile_model(describe_fields("tag", [RawField(name="id")]))
    with pytest.raises(ValidationError):
        compiled.list_query(ListParams(), parent_id=1)


def test_postgresql_dialect():
    compiled = compile_model(describe_fields("comment", COMMENT_FIELDS), "postgresql")
    assert '"id" SERIAL PRIMARY KEY' in compiled.ddl
    assert '"created_at" TIMESTAMP DEFAULT CURRENT_TIMESTAMP' in compiled.ddl
    assert compiled.insert.sql.count("%s") == len(compiled.insert.binds)
    query = compiled.list_query(ListParams.parse(search="z"), parent_id=1)
    assert query.sql.count("%s") == len(query.params)


def test_uuid_primary_key():
    compiled = compile_model(
        describe_fields("doc", [RawField(name="id"), RawField(name="body")], id_strategy="uuid")
    )
    assert '"id" TEXT PRIMARY KEY DEFAULT' in compiled.ddl
    assert compiled.insert.binds == ("body",)


def test_unknown_dialect():
    with pytest.raises(ValidationError):
        compile_model(describe_fields("tag", [RawField(name="id")]), "oracle")


def test_model_without_primary_key_fails_to_compile():
    model = ModelDescription(
        table="loose",
        fields=(FieldDescriptor(name="name", kind=FieldKind.SCALAR, storage=StorageType.TEXT),),
    )
    with pytest.raises(ValidationError):
        compile_model(model)


def test_empty_model_fails_to_compile():
    with pytest.raises(ValidationError):
        compile_model(ModelDescription(table="empty", fields=()))


def test_optional_field_defaults_in_ddl():
    compiled = compile_model(
        describe_fields(
            "note",
            [
                RawField(name="id"),
                RawField(name="views", type_name="int", required=False, default=0),
                RawField(name="ratio", type_name="float", required=False, default=0.5),
                RawField(name="status", required=False, default="it's new"),
                RawField(name="pinned", type_name="bool", required=False, default=False),
                RawField(name="memo", required=False),
            ],
        )
    )
    assert compiled.ddl == (
        'CREATE TABLE IF NOT EXISTS "note" ('
        '"id" INTEGER PRIMARY KEY AUTOINCREMENT, '
        '"views" INTEGER DEFAULT 0, '
        '"ratio" REAL DEFAULT 0.5, '
        "\"status\" TEXT DEFAULT 'it''s new', "
        '"pinned" INTEGER DEFAULT 0, '
        '"memo" TEXT)'
    )
