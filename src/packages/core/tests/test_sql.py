"""Tests for SQL text helpers."""
from dbdump_core.database import Column
from dbdump_core.dump.sql import (
    bit_literal,
    classify_columns,
    escape_string,
    normalize_create_statement,
    str_lreplace,
)


def test_escape_string():
    assert escape_string("it's") == "'it\\'s'"
    assert escape_string("a\\b") == "'a\\\\b'"
    assert escape_string("l1\nl2\r\x00\x1a") == "'l1\\nl2\\r\\0\\Z'"


def test_bit_literal_padded_to_width():
    assert bit_literal(b"\x05", 3) == "b'00000101'"
    assert bit_literal(5, 8) == "b'00000101'"
    assert bit_literal(1, 1) == "b'1'"


def test_str_lreplace_replaces_last():
    assert str_lreplace("TYPE=", "ENGINE=", "a TYPE= b TYPE=x") == "a TYPE= b ENGINE=x"
    assert str_lreplace("nope", "x", "abc") == "abc"


def test_normalize_legacy_engine_and_page_checksum():
    create = "CREATE TABLE `t` (\n  `id` int\n) TYPE=MyISAM PAGE_CHECKSUM=1 DEFAULT CHARSET=latin1"
    out = normalize_create_statement(create, "t", "t")
    assert "ENGINE=MyISAM" in out
    assert "TYPE=" not in out
    assert "PAGE_CHECKSUM" not in out


def test_page_checksum_kept_for_other_engines():
    create = "CREATE TABLE `t` (`id` int) ENGINE=Aria PAGE_CHECKSUM=1"
    assert "PAGE_CHECKSUM=1" in normalize_create_statement(create, "t", "t")


def test_normalize_renames_table():
    create = "CREATE TABLE `WP_posts` (`id` int) ENGINE=InnoDB"
    assert normalize_create_statement(create, "WP_posts", "wp_posts").startswith("CREATE TABLE `wp_posts`")


def test_classify_and_encode():
    layout = classify_columns([
        Column("ID", "bigint(20) unsigned", "PRI"),
        Column("data", "blob"),
        Column("flags", "bit(4)"),
        Column("title", "varchar(255)"),
        Column("count", "int(11)"),
    ])
    assert layout.keyset_column == "ID"
    assert layout.encode("ID", 42) == "42"
    assert layout.encode("count", None) == "NULL"
    assert layout.encode("count", "") == "NULL"
    assert layout.encode("data", b"\x01\xff") == "0x01ff"
    assert layout.encode("data", b"") == "''"
    assert layout.encode("flags", 3) == "b'0011'"
    assert layout.encode("title", "O'Neil") == "'O\\'Neil'"
    assert layout.encode("title", None) == "NULL"


def test_keyset_needs_single_wide_integer_key():
    composite = classify_columns([Column("a", "int(11)", "PRI"), Column("b", "int(11)", "PRI")])
    assert composite.keyset_column is None
    tiny = classify_columns([Column("a", "tinyint(4)", "PRI")])
    assert tiny.keyset_column is None
    text_key = classify_columns([Column("slug", "varchar(20)", "PRI")])
    assert text_key.keyset_column is None
