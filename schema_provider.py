# ---------- Schema provider ----------
# Reads the live database and hands back already-rendered objects:
#   - fetch_schema_blob():    whole schema as one pg_dump -s text (consolidated mode)
#   - fetch_schema_objects(): one SchemaObject per table and per standalone index
#   - fetch_static_data():    INSERT statements for the configured static data tables
#
# Everything is queried with an ORDER BY so that re-running the export against an unchanged
# database produces byte-identical files. Catalog queries need PostgreSQL 12+ (attgenerated).
#
# The connection is opened once per invocation; use the provider as a context manager so it
# is closed on every exit path:
#     with PostgresSchemaProvider(dsn) as provider:
#         ...

from __future__ import annotations

import logging
import os
import subprocess
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple
from urllib.parse import quote

import psycopg2
from psycopg2 import sql

from export_errors import FetchError, ProviderConnectionError
from schema_objects import OBJECT_TYPE_INDEX, OBJECT_TYPE_TABLE, SchemaObject, StaticData, object_filename

DEFAULT_SCHEMA = "public"

logger = logging.getLogger("pg_schema_export")


class SchemaProvider(Protocol):
    def fetch_schema_blob(self) -> bytes:
        ...

    def fetch_schema_objects(self) -> List[SchemaObject]:
        ...

    def fetch_static_data(self, tables: Sequence[str], order_by: Mapping[str, str]) -> List[StaticData]:
        ...


# --- pg_dump helpers ---
def dsn_to_pg_dump_connarg(dsn: Dict[str, str]) -> str:
    # Converts a psycopg2-style dsn dict into a pg_dump --dbname argument, using a connection URI if host present.
    # The password is never embedded here; see pg_dump_env().
    dbname = dsn.get("dbname") or dsn.get("database")
    if not dbname:
        raise FetchError("pg_dump needs a database name (dbname)")
    host = dsn.get("host")
    user = dsn.get("user")
    port = dsn.get("port")
    if host:
        uri = "postgresql://"
        if user:
            uri += quote(str(user), safe="") + "@"
        uri += str(host)
        if port:
            uri += f":{port}"
        uri += f"/{quote(str(dbname), safe='')}"
        return f"--dbname={uri}"
    else:
        if user:
            return f"--dbname=dbname={dbname} user={user}"
        return f"--dbname={dbname}"


def pg_dump_env(dsn: Dict[str, str]) -> Dict[str, str]:
    env = dict(os.environ)
    password = dsn.get("password")
    if password:
        env["PGPASSWORD"] = str(password)
    return env


# --- Rendering ---
def render_sql(composable: sql.Composable, conn) -> str:
    return composable.as_string(conn)


def split_table_name(table: str) -> Tuple[str, str]:
    # "users" -> ("public", "users"); "audit.events" -> ("audit", "events")
    if "." in table:
        schema, name = table.split(".", 1)
        return schema, name
    return DEFAULT_SCHEMA, table


def render_column(name: str, col_type: str, not_null: bool, default: Optional[str],
                  identity: str = "", generated: str = "") -> str:
    # name is expected to be quoted already (quote_ident on the server side)
    line = f"{name} {col_type}"
    if generated == "s" and default is not None:
        line += f" GENERATED ALWAYS AS ({default}) STORED"
    elif identity == "a":
        line += " GENERATED ALWAYS AS IDENTITY"
    elif identity == "d":
        line += " GENERATED BY DEFAULT AS IDENTITY"
    elif default is not None:
        line += f" DEFAULT {default}"
    if not_null:
        line += " NOT NULL"
    return line


def render_create_table(qualified_name: str, columns: Sequence[str], constraints: Sequence[Tuple[str, str]]) -> str:
    lines = [f"    {column}" for column in columns]
    lines += [f"    CONSTRAINT {name} {definition}" for name, definition in constraints]
    body = ",\n".join(lines)
    if body:
        body = f"\n{body}\n"
    return f"CREATE TABLE {qualified_name} ({body});\n"


class PostgresSchemaProvider:
    def __init__(self, dsn: Dict[str, str], requested_schemas: Optional[List[str]] = None):
        self.dsn = dsn
        self.requested_schemas = requested_schemas
        self.conn = None

    def __enter__(self) -> "PostgresSchemaProvider":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def connect(self):
        try:
            self.conn = psycopg2.connect(**self.dsn)
        except psycopg2.Error as e:
            raise ProviderConnectionError(f"could not connect to database {self.dsn.get('dbname')!r}: {e}") from e
        self.conn.autocommit = True
        logger.debug("Connected to %s", self.dsn.get("dbname"))

    def close(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None
            logger.debug("Connection closed.")

    def _query(self, query, params=None) -> List[tuple]:
        try:
            with self.conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg2.Error as e:
            raise FetchError(f"query failed: {e}") from e

    # --- Catalog helpers ---
    def target_schemas(self) -> List[str]:
        # If caller supplied a list (CLI --schemas) use that; otherwise list all non-system schemas.
        # 'pg_t%' covers pg_toast and pg_temp.
        if self.requested_schemas:
            return list(self.requested_schemas)
        rows = self._query(
            """
            SELECT nspname
            FROM pg_namespace
            WHERE nspname NOT IN ('pg_catalog', 'information_schema')
              AND nspname NOT LIKE 'pg_t%'
            ORDER BY nspname;
            """
        )
        return [r[0] for r in rows]

    # --- Consolidated ---
    def fetch_schema_blob(self) -> bytes:
        cmd = ["pg_dump", "-s", "--no-owner", "--no-privileges"]
        for schema in self.requested_schemas or ():
            cmd += ["-n", schema]
        cmd.append(dsn_to_pg_dump_connarg(self.dsn))
        logger.debug("pg_dump: %s", " ".join(cmd))
        try:
            proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                  env=pg_dump_env(self.dsn), check=False)
        except FileNotFoundError as e:
            raise FetchError("pg_dump not found on PATH.") from e
        if proc.returncode != 0:
            raise FetchError(f"pg_dump failed: {proc.stderr.decode(errors='replace').strip()}")
        return proc.stdout

    # --- Discrete ---
    def fetch_schema_objects(self) -> List[SchemaObject]:
        schemas = self.target_schemas()
        logger.info("Target schemas: %s", ", ".join(schemas) or "<none>")
        return self.fetch_tables(schemas) + self.fetch_indexes(schemas)

    def fetch_tables(self, schemas: List[str]) -> List[SchemaObject]:
        tables = self._query(
            """
            SELECT c.oid, n.nspname, c.relname,
                   quote_ident(n.nspname) || '.' || quote_ident(c.relname) AS qualified
            FROM pg_class c
            JOIN pg_namespace n ON c.relnamespace = n.oid
            WHERE c.relkind IN ('r', 'p') AND n.nspname = ANY(%s)
            ORDER BY n.nspname, c.relname;
            """,
            (schemas,),
        )
        column_rows = self._query(
            """
            SELECT a.attrelid, quote_ident(a.attname),
                   format_type(a.atttypid, a.atttypmod),
                   a.attnotnull,
                   pg_get_expr(d.adbin, d.adrelid),
                   a.attidentity,
                   a.attgenerated
            FROM pg_attribute a
            JOIN pg_class c ON a.attrelid = c.oid
            JOIN pg_namespace n ON c.relnamespace = n.oid
            LEFT JOIN pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum
            WHERE c.relkind IN ('r', 'p') AND n.nspname = ANY(%s)
              AND a.attnum > 0 AND NOT a.attisdropped
            ORDER BY a.attrelid, a.attnum;
            """,
            (schemas,),
        )
        # NOT NULL constraints ('n', PostgreSQL 18+) are already rendered on the column
        constraint_rows = self._query(
            """
            SELECT con.conrelid, quote_ident(con.conname), pg_get_constraintdef(con.oid, true)
            FROM pg_constraint con
            JOIN pg_class c ON con.conrelid = c.oid
            JOIN pg_namespace n ON c.relnamespace = n.oid
            WHERE c.relkind IN ('r', 'p') AND n.nspname = ANY(%s)
              AND con.contype <> 'n' AND con.conislocal
            ORDER BY con.conrelid, con.conname;
            """,
            (schemas,),
        )

        columns = defaultdict(list)
        for oid, name, col_type, not_null, default, identity, generated in column_rows:
            columns[oid].append(render_column(name, col_type, not_null, default, identity, generated))
        constraints = defaultdict(list)
        for oid, conname, condef in constraint_rows:
            constraints[oid].append((conname, condef))

        objects = []
        for oid, nsp, relname, qualified in tables:
            ddl = render_create_table(qualified, columns[oid], constraints[oid])
            objects.append(SchemaObject(OBJECT_TYPE_TABLE, object_filename(f"{nsp}.{relname}"), ddl))
        logger.info("Fetched %d tables", len(objects))
        return objects

    def fetch_indexes(self, schemas: List[str]) -> List[SchemaObject]:
        # Indexes backing primary key / unique / exclusion constraints are part of the table DDL.
        rows = self._query(
            """
            SELECT n.nspname, ic.relname, pg_get_indexdef(i.indexrelid)
            FROM pg_index i
            JOIN pg_class ic ON ic.oid = i.indexrelid
            JOIN pg_class tc ON tc.oid = i.indrelid
            JOIN pg_namespace n ON n.oid = ic.relnamespace
            WHERE n.nspname = ANY(%s)
              AND tc.relkind IN ('r', 'p')
              AND NOT EXISTS (
                  SELECT 1 FROM pg_constraint con
                  WHERE con.conindid = i.indexrelid AND con.contype IN ('p', 'u', 'x')
              )
            ORDER BY n.nspname, ic.relname;
            """,
            (schemas,),
        )
        objects = [
            SchemaObject(OBJECT_TYPE_INDEX, object_filename(f"{nsp}.{name}"), indexdef.rstrip() + ";\n")
            for nsp, name, indexdef in rows
        ]
        logger.info("Fetched %d indexes", len(objects))
        return objects

    # --- Static data ---
    def fetch_static_data(self, tables: Sequence[str], order_by: Mapping[str, str]) -> List[StaticData]:
        return [self.fetch_table_rows(table, order_by.get(table)) for table in tables]

    def _table_columns(self, schema: str, name: str) -> Tuple[List[str], List[str]]:
        # Returns (insertable columns, primary key columns). Generated columns cannot be inserted.
        rows = self._query(
            """
            SELECT a.attname, a.attnum = ANY(coalesce(pk.indkey::int2[], '{}'::int2[])),
                   array_position(pk.indkey::int2[], a.attnum)
            FROM pg_attribute a
            JOIN pg_class c ON a.attrelid = c.oid
            JOIN pg_namespace n ON c.relnamespace = n.oid
            LEFT JOIN pg_index pk ON pk.indrelid = c.oid AND pk.indisprimary
            WHERE n.nspname = %s AND c.relname = %s AND c.relkind IN ('r', 'p')
              AND a.attnum > 0 AND NOT a.attisdropped AND a.attgenerated = ''
            ORDER BY a.attnum;
            """,
            (schema, name),
        )
        columns = [r[0] for r in rows]
        primary_key = [r[0] for r in sorted((r for r in rows if r[1]), key=lambda r: r[2])]
        return columns, primary_key

    def fetch_table_rows(self, table: str, custom_order_by: Optional[str] = None) -> StaticData:
        schema, name = split_table_name(table)
        columns, primary_key = self._table_columns(schema, name)
        if not columns:
            raise FetchError(f"static data table not found: {table}")

        if custom_order_by:
            # trusted expression from the project's own config file
            order = sql.SQL(custom_order_by)
        elif primary_key:
            order = sql.SQL(", ").join(sql.Identifier(c) for c in primary_key)
        else:
            # json, point, xml have no ordering operator; their text form does
            order = sql.SQL(", ").join(sql.SQL("{}::text").format(sql.Identifier(c)) for c in columns)

        relation = sql.Identifier(schema, name)
        column_list = sql.SQL(", ").join(sql.Identifier(c) for c in columns)
        # Values are read as text and written back as string literals; PostgreSQL coerces
        # them to the column types on INSERT, which keeps the output independent of
        # client-side type adapters.
        query = sql.SQL("SELECT {values} FROM {relation} ORDER BY {order}").format(
            values=sql.SQL(", ").join(sql.SQL("{}::text").format(sql.Identifier(c)) for c in columns),
            relation=relation,
            order=order,
        )
        rows = self._query(query)

        try:
            prefix = render_sql(sql.SQL("INSERT INTO {relation} ({columns}) VALUES ").format(
                relation=relation, columns=column_list
            ), self.conn)
            statements = tuple(
                prefix + "(" + ", ".join(render_sql(sql.Literal(v), self.conn) for v in row) + ");"
                for row in rows
            )
        except psycopg2.Error as e:
            raise FetchError(f"could not render rows of {table}: {e}") from e
        logger.debug("Fetched %d rows from %s", len(statements), table)
        return StaticData(table=table, statements=statements)
