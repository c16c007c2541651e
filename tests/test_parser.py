import pytest

from pgdump2sqlite import (
    Column,
    ColumnType,
    Copy,
    CreateTable,
    GrammarError,
    MalformedStatementError,
    parse_dump,
    parse_statements,
    split_statements,
)
from pgdump2sqlite.model import Unsupported


def test_parse_create_table_simple():
    stmts = parse_dump("CREATE TABLE t (a integer, b text);")

    assert stmts == [
        CreateTable(
            name="t",
            columns=(
                Column("a", ColumnType.INTEGER, "integer"),
                Column("b", ColumnType.TEXT, "text"),
            ),
        )
    ]


def test_parse_create_table_with_constraints_and_defaults():
    dump = """CREATE TABLE public.session (
id integer NOT NULL,
date timestamp without time zone DEFAULT now() NOT NULL,
turn public.session_turn_enum NOT NULL,
role public.user_role_enum DEFAULT 'other'::public.user_role_enum NOT NULL,
active boolean NOT NULL,
number double,
some_text text,
"userId" integer
);
"""
    (table,) = parse_dump(dump)

    assert table.name == "session"
    assert [c.name for c in table.columns] == [
        "id",
        "date",
        "turn",
        "role",
        "active",
        "number",
        "some_text",
        "userId",
    ]
    assert [c.type for c in table.columns] == [
        ColumnType.INTEGER,
        ColumnType.UNKNOWN,
        ColumnType.UNKNOWN,
        ColumnType.UNKNOWN,
        ColumnType.BOOLEAN,
        ColumnType.REAL,
        ColumnType.TEXT,
        ColumnType.INTEGER,
    ]
    assert table.columns[1].source_type == "timestamp without time zone"
    assert table.columns[3].source_type == "public.user_role_enum"


def test_parse_create_table_types():
    dump = """CREATE TABLE public."Prices" (
    "Id" INTEGER NOT NULL,
    "Amount" double precision,
    "Title" character varying(255) NOT NULL,
    "Tags" integer[],
    "Price" numeric(10,2) DEFAULT 0.0
);
"""
    (table,) = parse_dump(dump)

    assert table.name == "Prices"
    assert [(c.name, c.type, c.source_type) for c in table.columns] == [
        ("Id", ColumnType.INTEGER, "INTEGER"),
        ("Amount", ColumnType.REAL, "double precision"),
        ("Title", ColumnType.UNKNOWN, "character varying(255)"),
        ("Tags", ColumnType.UNKNOWN, "integer[]"),
        ("Price", ColumnType.UNKNOWN, "numeric(10,2)"),
    ]


def test_parse_create_table_skips_table_constraints():
    dump = """CREATE TABLE orders (
    id integer,
    customer integer,
    CONSTRAINT orders_pkey PRIMARY KEY (id),
    UNIQUE (customer, id),
    FOREIGN KEY (customer) REFERENCES customers(id),
    CHECK (id > 0)
);
"""
    (table,) = parse_dump(dump)

    assert [c.name for c in table.columns] == ["id", "customer"]


def test_parse_quoted_and_bracketed_names():
    (table,) = parse_dump('CREATE TABLE [my table] ("we""ird" text, [other] integer);')

    assert table.name == "my table"
    assert [c.name for c in table.columns] == ['we"ird', "other"]


def test_parse_keywords_are_case_insensitive():
    (table,) = parse_dump("create unlogged table if not exists s.T (A Integer);")

    assert table == CreateTable("T", (Column("A", ColumnType.INTEGER, "Integer"),))


def test_parse_copy_from_path():
    dump = """COPY public.attendance (
    id,
    "checkIn",
    "checkOut",
    active,
    "entryInventoryId",
    "exitInventoryId",
    "userId",
    "cashMachineId",
    "fundsTransferedId"
) FROM '$$PATH$$/3399.dat';
"""
    (copy,) = parse_dump(dump)

    assert isinstance(copy, Copy)
    assert copy.name == "attendance"
    assert copy.columns == (
        "id",
        "checkIn",
        "checkOut",
        "active",
        "entryInventoryId",
        "exitInventoryId",
        "userId",
        "cashMachineId",
        "fundsTransferedId",
    )
    assert copy.source == "$$PATH$$/3399.dat"
    assert not copy.from_stdin
    assert copy.end_offset == dump.index(";") + 1


def test_parse_copy_after_comment_preamble():
    dump = """--
-- NOTE:
--
-- File paths need to be edited. Search for $$PATH$$ and
-- replace it with the path to the directory containing
-- the extracted data files.
--
-- PostgreSQL database dump
--

-- Dumped from database version 13.4 (Debian 13.4-1.pgdg100+1)


COPY public.attendance (id, "checkIn", active) FROM stdin;
1\t2021-01-01\tt
\\.
"""
    (copy,) = parse_dump(dump)

    assert copy.name == "attendance"
    assert copy.columns == ("id", "checkIn", "active")
    assert copy.from_stdin
    assert copy.end_offset == dump.index("FROM stdin;") + len("FROM stdin;")


def test_copy_end_offset_counts_bytes():
    dump = "-- café ünïcode\nCOPY t (a) FROM stdin;\n1\n\\.\n"

    (copy,) = parse_dump(dump)

    expected = len(dump[: dump.index(";") + 1].encode("utf-8"))
    assert copy.end_offset == expected
    assert copy.end_offset > dump.index(";") + 1


def test_inline_copy_data_is_not_parsed_as_statements():
    dump = (
        "CREATE TABLE notes (body text);\n"
        "COPY notes (body) FROM stdin;\n"
        "CREATE TABLE evil (x integer);\n"
        "it's; not -- a statement\n"
        "\\.\n"
        "CREATE TABLE after (y integer);\n"
    )
    stmts = parse_dump(dump)

    assert [type(s).__name__ for s in stmts] == ["CreateTable", "Copy", "CreateTable"]
    assert [s.name for s in stmts] == ["notes", "notes", "after"]


def test_empty_copy_block():
    dump = "COPY t (a, b) FROM stdin;\n\\.\nCREATE TABLE t (a integer, b text);\n"

    stmts = parse_dump(dump)

    assert [s.name for s in stmts] == ["t", "t"]


@pytest.mark.parametrize("dump", ["", "\n\n   \n", "-- only a comment\n--\n", "/* block */\n"])
def test_comment_only_and_blank_input(dump):
    assert parse_dump(dump) == []
    assert parse_statements(dump) == []


def test_unsupported_statements_are_dropped():
    dump = """--
-- PostgreSQL database dump
--

\\restrict abc123

SET statement_timeout = 0;
SET client_encoding = 'UTF8';
SELECT pg_catalog.set_config('search_path', '', false);

CREATE FUNCTION public.touch() RETURNS trigger
    LANGUAGE plpgsql
    AS $_$
BEGIN
    NEW.updated := now();
    RETURN NEW;
END;
$_$;

CREATE TABLE public.items (
    id integer NOT NULL,
    name text
);

ALTER TABLE public.items OWNER TO postgres;

CREATE SEQUENCE public.items_id_seq
    AS integer
    START WITH 1
    INCREMENT BY 1;

COMMENT ON TABLE public.items IS 'it''s a -- table; really';

/* nested /* block */ comment; */

COPY public.items (id, name) FROM stdin;
1\tfirst
\\.

CREATE INDEX items_name_idx ON public.items USING btree (name);

ALTER TABLE ONLY public.items
    ADD CONSTRAINT items_pkey PRIMARY KEY (id);

\\unrestrict abc123
"""
    items = parse_statements(dump)
    tables, copies, unsupported = split_statements(items)

    assert [t.name for t in tables] == ["items"]
    assert [c.name for c in copies] == ["items"]
    assert [u.keyword for u in unsupported] == [
        "\\restrict",
        "SET",
        "SET",
        "SELECT",
        "CREATE",
        "ALTER",
        "CREATE",
        "COMMENT",
        "CREATE",
        "ALTER",
        "\\unrestrict",
    ]
    assert len(tables) + len(copies) + len(unsupported) == len(items)
    assert parse_dump(dump) == [s for s in items if not isinstance(s, Unsupported)]


def test_unsupported_statement_line_numbers():
    items = parse_statements("SET a = 1;\n\nSET b = 2;\n")

    assert [u.line for u in items] == [1, 3]


@pytest.mark.parametrize(
    "stmt",
    [
        "COPY (SELECT 1) TO stdout;",
        "COPY public.items (id) TO stdout;",
        "CREATE TABLE copy_of AS SELECT * FROM items;",
        "CREATE TABLE part PARTITION OF items FOR VALUES IN (1);",
        "CREATE VIEW v AS SELECT 1;",
    ],
)
def test_non_modelled_forms_are_unsupported(stmt):
    (item,) = parse_statements(stmt)

    assert isinstance(item, Unsupported)
    assert parse_dump(stmt) == []


@pytest.mark.parametrize(
    "dump",
    [
        "COPY t (a, b);",
        "COPY t FROM stdin;\n\\.\n",
        "COPY t () FROM stdin;\n\\.\n",
        "COPY t (a) FROM PROGRAM 'cat x';",
        "CREATE TABLE t (a);",
        "CREATE TABLE t ();",
        "CREATE TABLE t (a integer,);",
    ],
)
def test_malformed_statements(dump):
    with pytest.raises(MalformedStatementError):
        parse_dump(dump)


def test_malformed_statement_reports_line():
    with pytest.raises(MalformedStatementError) as excinfo:
        parse_dump("SET a = 1;\n\nCOPY t (a, b);\n")

    assert excinfo.value.line == 3


@pytest.mark.parametrize(
    "dump",
    [
        "CREATE TABLE t (a integer",
        "CREATE TABLE t (a integer);\nSET x = 1",
        "SET x = 'unterminated;",
        'CREATE TABLE "t (a integer);',
        "CREATE FUNCTION f() AS $$ begin;",
        "/* never closed",
        "SELECT 1);",
        "COPY t (a) FROM stdin;\n1\n2\n",
    ],
)
def test_grammar_errors(dump):
    with pytest.raises(GrammarError):
        parse_dump(dump)


def test_archive_statements_have_no_inline_copy_data():
    restore = (
        "CREATE TABLE t (a integer);\n"
        "COPY t (a) FROM stdin;\n"
        "CREATE TABLE u (b text);\n"
        "COPY u (b) FROM '$$PATH$$/3001.dat';\n"
    )

    stmts = parse_dump(restore, inline_copy_data=False)

    assert [(type(s).__name__, s.name) for s in stmts] == [
        ("CreateTable", "t"),
        ("Copy", "t"),
        ("CreateTable", "u"),
        ("Copy", "u"),
    ]
    assert stmts[1].from_stdin
    with pytest.raises(GrammarError):
        parse_dump(restore)


def test_terminator_line_without_inline_data_is_not_a_block_end():
    restore = "COPY t (a) FROM stdin;\nCREATE TABLE u (b text);\n\\.\nCREATE TABLE v (c text);\n"

    items = parse_statements(restore, inline_copy_data=False)

    assert [type(i).__name__ for i in items] == ["Copy", "CreateTable", "Unsupported", "CreateTable"]
    assert items[2] == Unsupported(keyword="\\.", line=3)


def test_grammar_error_position():
    with pytest.raises(GrammarError) as excinfo:
        parse_dump("SET a = 1;\n\n  SET b = 2")

    assert excinfo.value.line == 3
    assert excinfo.value.column == 3
