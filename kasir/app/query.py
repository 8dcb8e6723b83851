from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence, Union

from psycopg import sql


# (parent table, embedded relation) -> (parent column, child column, child table).
# The embedded rows are those where child.child_column = parent.parent_column.
RELATIONS: dict[tuple[str, str], tuple[str, str, str]] = {
    ("transactions", "transaction_items"): ("id", "transaction_id", "transaction_items"),
    ("transaction_items", "products"): ("product_id", "id", "products"),
    ("transaction_items", "transactions"): ("transaction_id", "id", "transactions"),
    ("products", "categories"): ("category_id", "id", "categories"),
}

OPERATORS = {
    "eq": "=",
    "ilike": "ILIKE",
    "gte": ">=",
    "lte": "<=",
}


@dataclass(frozen=True)
class Embed:
    """A nested relation in a select list, e.g. transaction_items(products(name))."""

    relation: str
    columns: tuple = ("*",)
    many: bool = True
    alias: Optional[str] = None

    @property
    def key(self) -> str:
        return self.alias or self.relation


Column = Union[str, Embed]


@dataclass(frozen=True)
class Predicate:
    op: str
    column: str
    value: Any


@dataclass
class QueryResult:
    rows: list[dict]
    count: Optional[int] = None


@dataclass
class Query:
    table: str
    columns: tuple = ("*",)
    predicates: list[Predicate] = field(default_factory=list)
    order_by: Optional[str] = None
    ascending: bool = True
    offset: Optional[int] = None
    limit_count: Optional[int] = None
    count: Optional[str] = None
    head: bool = False

    def select(self, *columns: Column, count: Optional[str] = None, head: bool = False) -> "Query":
        if count not in (None, "exact"):
            raise ValueError(f"unsupported count mode: {count}")
        self.columns = tuple(columns) or ("*",)
        self.count = count
        self.head = head
        return self

    def _where(self, op: str, column: str, value: Any) -> "Query":
        self.predicates.append(Predicate(op, column, value))
        return self

    def eq(self, column: str, value: Any) -> "Query":
        return self._where("eq", column, value)

    def ilike(self, column: str, pattern: str) -> "Query":
        return self._where("ilike", column, pattern)

    def gte(self, column: str, value: Any) -> "Query":
        return self._where("gte", column, value)

    def lte(self, column: str, value: Any) -> "Query":
        return self._where("lte", column, value)

    def order(self, column: str, ascending: bool = True) -> "Query":
        self.order_by = column
        self.ascending = ascending
        return self

    def range(self, start: int, end: int) -> "Query":
        # Inclusive on both ends, like PostgREST's Range header.
        if start < 0 or end < start:
            raise ValueError("range bounds must satisfy 0 <= start <= end")
        self.offset = start
        self.limit_count = end - start + 1
        return self

    def limit(self, n: int) -> "Query":
        if n <= 0:
            raise ValueError("limit must be > 0")
        self.limit_count = n
        return self


class Backend(Protocol):
    async def fetch(self, query: Query) -> QueryResult: ...

    async def insert(self, table: str, rows: Sequence[dict]) -> list[dict]: ...

    async def update(self, table: str, values: dict, **match: Any) -> list[dict]: ...


def resolve_relation(parent: str, relation: str) -> tuple[str, str, str]:
    try:
        return RELATIONS[(parent, relation)]
    except KeyError:
        raise ValueError(f"no relation {relation!r} declared for table {parent!r}")


def _object_expr(table: str, alias: str, columns: tuple, depth: int) -> sql.Composable:
    plain = [c for c in columns if isinstance(c, str) and c != "*"]
    embeds = [c for c in columns if isinstance(c, Embed)]
    if "*" in columns:
        obj: sql.Composable = sql.SQL("to_jsonb({})").format(sql.Identifier(alias))
    else:
        pairs = sql.SQL(", ").join(
            sql.SQL("{}, {}").format(sql.Literal(c), sql.Identifier(alias, c)) for c in plain
        )
        obj = sql.SQL("jsonb_build_object({})").format(pairs)
    for emb in embeds:
        obj = sql.SQL("{} || jsonb_build_object({}, {})").format(
            obj, sql.Literal(emb.key), _embed_expr(table, alias, emb, depth + 1)
        )
    return obj


def _embed_expr(parent: str, parent_alias: str, emb: Embed, depth: int) -> sql.Composable:
    parent_col, child_col, child_table = resolve_relation(parent, emb.relation)
    alias = f"t{depth}"
    obj = _object_expr(child_table, alias, emb.columns, depth)
    join = sql.SQL("{} = {}").format(sql.Identifier(alias, child_col), sql.Identifier(parent_alias, parent_col))
    if emb.many:
        return sql.SQL("COALESCE((SELECT jsonb_agg({obj}) FROM {tbl} AS {al} WHERE {join}), '[]'::jsonb)").format(
            obj=obj, tbl=sql.Identifier(child_table), al=sql.Identifier(alias), join=join
        )
    return sql.SQL("(SELECT {obj} FROM {tbl} AS {al} WHERE {join} LIMIT 1)").format(
        obj=obj, tbl=sql.Identifier(child_table), al=sql.Identifier(alias), join=join
    )


def _where_clause(query: Query, alias: str) -> tuple[sql.Composable, list]:
    if not query.predicates:
        return sql.SQL(""), []
    parts = []
    params: list = []
    for p in query.predicates:
        op = OPERATORS.get(p.op)
        if op is None:
            raise ValueError(f"unsupported operator: {p.op}")
        parts.append(sql.SQL("{} {} %s").format(sql.Identifier(alias, p.column), sql.SQL(op)))
        params.append(p.value)
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(parts), params


def compile_count(query: Query) -> tuple[sql.Composable, list]:
    alias = "t0"
    where, params = _where_clause(query, alias)
    stmt = sql.SQL("SELECT count(*) AS count FROM {} AS {}{}").format(
        sql.Identifier(query.table), sql.Identifier(alias), where
    )
    return stmt, params


def compile_select(query: Query) -> tuple[sql.Composable, list]:
    alias = "t0"
    select_items: list[sql.Composable] = []
    for col in query.columns:
        if isinstance(col, Embed):
            select_items.append(
                sql.SQL("{} AS {}").format(_embed_expr(query.table, alias, col, 1), sql.Identifier(col.key))
            )
        elif col == "*":
            select_items.append(sql.SQL("{}.*").format(sql.Identifier(alias)))
        else:
            select_items.append(sql.Identifier(alias, col))
    where, params = _where_clause(query, alias)
    stmt = sql.SQL("SELECT {} FROM {} AS {}{}").format(
        sql.SQL(", ").join(select_items), sql.Identifier(query.table), sql.Identifier(alias), where
    )
    if query.order_by:
        stmt += sql.SQL(" ORDER BY {} {}").format(
            sql.Identifier(alias, query.order_by), sql.SQL("ASC" if query.ascending else "DESC")
        )
    if query.limit_count is not None:
        stmt += sql.SQL(" LIMIT %s")
        params.append(query.limit_count)
    if query.offset:
        stmt += sql.SQL(" OFFSET %s")
        params.append(query.offset)
    return stmt, params
