# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""
Column types.

A schema may declare a SQLAlchemy type per physical column. Rows are fetched
as raw DBAPI values, so the type's result processor for the connection's
dialect is applied when a row is materialized, and its bind processor when a
value is bound as a parameter. Any SQLAlchemy type works, e.g.
``sqlalchemy.types.Boolean()``, as well as the decorators defined here.
"""

import json
import uuid

from pytz import UTC
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine.default import DefaultDialect
from sqlalchemy.types import CHAR, DateTime, String, TypeDecorator


__all__ = ['DEFAULT_DIALECT', 'from_db', 'to_db', 'JSON', 'UTCDateTime', 'UUID']


DEFAULT_DIALECT = DefaultDialect()


def from_db(column_type, value, dialect=DEFAULT_DIALECT):
    """
    Converts a raw DBAPI value using the result processor of `column_type`.

    >>> from sqlalchemy.dialects import sqlite
    >>> from_db(UTCDateTime(), '2017-01-02 03:04:05.678901', sqlite.dialect())
    datetime.datetime(2017, 1, 2, 3, 4, 5, 678901, tzinfo=<UTC>)
    """
    processor = column_type.dialect_impl(dialect).result_processor(dialect, None)
    return value if processor is None else processor(value)


def to_db(column_type, value, dialect=DEFAULT_DIALECT):
    """Converts a value for binding using the bind processor of `column_type`."""
    processor = column_type.dialect_impl(dialect).bind_processor(dialect)
    return value if processor is None else processor(value)


class UUID(TypeDecorator):
    """
    Platform-independent UUID type.

    Uses Postgresql's UUID type if available. Otherwise stores as a hex
    formatted CHAR(32). Values are always loaded as `uuid.UUID`.
    """
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(postgresql.UUID(as_uuid=False))
        else:
            return dialect.type_descriptor(CHAR(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return str(value)
        elif not isinstance(value, uuid.UUID):
            return uuid.UUID(value).hex
        else:
            return value.hex

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class JSON(TypeDecorator):
    """
    JSON documents stored as text.

    Args:
        comparator (callable): Decides whether two values are equal, so an
            assignment that doesn't change the document doesn't mark the
            column modified. Defaults to ``==``.
    """
    impl = String

    def __init__(self, comparator=None):
        self.comparator = comparator
        super(JSON, self).__init__()

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        elif isinstance(value, str):
            return value
        else:
            return json.dumps(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return json.loads(str(value))

    def compare_values(self, x, y):
        if self.comparator:
            return self.comparator(x, y)
        else:
            return x == y


class UTCDateTime(TypeDecorator):
    """Timezone aware datetimes stored as naive UTC."""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is not None:
            return value.replace(tzinfo=UTC)
