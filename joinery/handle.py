# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""Executes raw SQL on a SQLAlchemy connection."""

import time
from contextlib import contextmanager

from pockets.autolog import log
from sqlalchemy.exc import SQLAlchemyError

from joinery.exceptions import QueryError
from joinery.utils import fingerprint_sql, rewrite_placeholders


__all__ = ['DatabaseHandle']


class DatabaseHandle(object):
    """
    A single connection that runs one statement at a time.

    SQL is always written with ``?`` placeholders and rewritten for the
    paramstyle of the underlying DBAPI driver. Driver errors are logged and
    raised as `QueryError`; nothing is retried.

    Args:
        connection (sqlalchemy.engine.Connection): The connection to use.
    """

    def __init__(self, connection):
        self.connection = connection
        self.dialect = connection.dialect
        self.paramstyle = self.dialect.paramstyle
        self._last_insert_id = None
        self._affected_rows = 0

    def execute(self, sql, params=None):
        """
        Executes `sql` with positional `params`.

        Returns:
            list: The result rows as tuples, or an empty list for statements
                that don't return rows.
        """
        params = list(params or [])
        driver_sql, driver_params = rewrite_placeholders(sql, params, self.paramstyle)
        fingerprint = fingerprint_sql(sql)
        start = time.time()
        try:
            result = self.connection.exec_driver_sql(driver_sql, driver_params or None)
            rows = [tuple(row) for row in result] if result.returns_rows else []
        except SQLAlchemyError as e:
            log.error('Query {} failed: {} {!r}', fingerprint, sql, params, exc_info=True)
            raise QueryError('Query failed: {}'.format(getattr(e, 'orig', None) or e), sql, params) from e

        self._affected_rows = result.rowcount
        self._last_insert_id = getattr(result, 'lastrowid', None)
        log.debug('Query {} took {:.4f}s and returned {} row(s): {}', fingerprint, time.time() - start, len(rows), sql)
        return rows

    def last_insert_id(self):
        return self._last_insert_id

    def affected_rows(self):
        return self._affected_rows

    def in_transaction(self):
        return self.connection.in_transaction()

    def begin(self):
        if not self.connection.in_transaction():
            self.connection.begin()

    def commit(self):
        if self.connection.in_transaction():
            self.connection.commit()

    def rollback(self):
        if self.connection.in_transaction():
            self.connection.rollback()

    @contextmanager
    def transaction(self):
        """
        Runs the block in a transaction, joining one that is already open.

        A transaction started here is committed when the block exits cleanly
        and rolled back otherwise. A joined transaction is left for its owner
        to commit or roll back.
        """
        if self.connection.in_transaction():
            yield self
            return

        self.connection.begin()
        try:
            yield self
        except Exception:
            self.rollback()
            raise
        else:
            self.commit()

    def close(self):
        self.connection.close()

    @property
    def closed(self):
        return self.connection.closed
