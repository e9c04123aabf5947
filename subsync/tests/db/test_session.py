from subsync.db.session import _engine_options


def test_sqlite_sessions_may_cross_threads():
    assert _engine_options("sqlite://") == {"connect_args": {"check_same_thread": False}}


def test_server_databases_ping_pooled_connections():
    assert _engine_options("postgresql+psycopg2://u:p@db/subsync") == {"pool_pre_ping": True}
