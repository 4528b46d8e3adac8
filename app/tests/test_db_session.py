from app.core.config import Settings
from app.db.session import engine_options


def test_sqlite_gets_thread_check_off_and_no_pool_sizing():
    opts = engine_options(Settings(database_url="sqlite+pysqlite:///./channels.db"))

    assert opts == {"connect_args": {"check_same_thread": False}}


def test_postgres_pool_follows_settings():
    opts = engine_options(
        Settings(
            database_url="postgresql+psycopg2://u:p@localhost/channels",
            db_pool_size=12,
            db_max_overflow=3,
        )
    )

    assert opts == {"pool_pre_ping": True, "pool_size": 12, "max_overflow": 3}
