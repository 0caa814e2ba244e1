import pytest
from sqlite_hooks import Connection, ConnectionConfig


@pytest.fixture()
def config():
    return ConnectionConfig()


@pytest.fixture()
def db(config):
    conn = Connection(':memory:', config)
    yield conn
    if not conn.closed:
        for stmt in conn.statements:
            stmt.finalize()
        conn.close()


@pytest.fixture()
def foo_db(db):
    """Memory db with table foo(a integer primary key, b text) holding three rows."""
    db.execute("create table foo ( a integer primary key, b text )")
    db.execute("insert into foo ( b ) values ( 'foo' )")
    db.execute("insert into foo ( b ) values ( 'bar' )")
    db.execute("insert into foo ( b ) values ( 'baz' )")
    return db


@pytest.fixture()
def db_path(tmp_path):
    return tmp_path / 'test.db'
