from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from models import Base
from settings import DEFAULT_DB_URL


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_db(db_url=DEFAULT_DB_URL, lock_timeout=30):
    """Create the schema if needed and return a session factory bound to it."""
    connect_args = {}
    if db_url.startswith('sqlite'):
        connect_args = {'check_same_thread': False, 'timeout': lock_timeout}
    engine = create_engine(db_url, connect_args=connect_args)
    if engine.dialect.name == 'sqlite':
        event.listen(engine, 'connect', _enable_sqlite_foreign_keys)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
