import pytest
import sqlalchemy
from sqlalchemy.pool import StaticPool

from joinery import SessionManager
from tests.models import EXAMPLE_DATA, SCHEMA_SQL, registry


def create_example_engine():
    engine = sqlalchemy.create_engine(
        'sqlite+pysqlite://', poolclass=StaticPool, connect_args={'check_same_thread': False})
    with engine.begin() as connection:
        for statement in SCHEMA_SQL + EXAMPLE_DATA:
            connection.exec_driver_sql(statement)
    return engine


@pytest.fixture
def db_engine():
    engine = create_example_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def Session(db_engine):
    class Session(SessionManager):
        engine = db_engine
        registry = registry

        class SessionMixin(object):
            def person_named(self, first_name):
                return self.get_one_by_criteria('Person', {'Person.first_name=?': first_name})

    return Session


@pytest.fixture
def session(Session):
    with Session() as session:
        yield session
