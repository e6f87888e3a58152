# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""Tests for :mod:`joinery.handle` module."""

import pytest

from joinery.exceptions import QueryError
from joinery.handle import DatabaseHandle


@pytest.fixture
def handle(db_engine):
    handle = DatabaseHandle(db_engine.connect())
    yield handle
    handle.rollback()
    handle.close()


def test_execute(handle):
    rows = handle.execute('SELECT person_id, first_name FROM person WHERE last_name=?', ['Gidden'])
    assert rows == [(9, 'Tom')]


def test_execute_without_params(handle):
    assert handle.execute('SELECT COUNT(*) FROM company') == [(2,)]


def test_statement_without_rows(handle):
    assert handle.execute('UPDATE person SET first_name=? WHERE person_id=?', ['Thomas', 9]) == []
    assert handle.affected_rows() == 1


def test_last_insert_id(handle):
    handle.execute('INSERT INTO person (first_name, last_name) VALUES (?, ?)', ['New', 'Person'])
    assert handle.last_insert_id() == 13


def test_query_error(handle):
    with pytest.raises(QueryError) as excinfo:
        handle.execute('SELECT missing_column FROM person WHERE person_id=?', [9])
    assert excinfo.value.sql == 'SELECT missing_column FROM person WHERE person_id=?'
    assert excinfo.value.params == [9]
    assert excinfo.value.__cause__ is not None


class TestTransaction(object):

    def test_commit(self, db_engine, handle):
        with handle.transaction():
            handle.execute('UPDATE company SET company_name=? WHERE company_id=?', ['Renamed', 2])
        assert not handle.in_transaction()
        with db_engine.connect() as connection:
            assert connection.exec_driver_sql('SELECT company_name FROM company WHERE company_id=2').scalar() == \
                'Renamed'

    def test_rollback(self, handle):
        with pytest.raises(QueryError):
            with handle.transaction():
                handle.execute('DELETE FROM contact_detail WHERE person_id=?', [9])
                handle.execute('SELECT nonsense FROM nowhere')
        assert not handle.in_transaction()
        assert handle.execute('SELECT COUNT(*) FROM contact_detail WHERE person_id=?', [9]) == [(3,)]

    def test_joins_open_transaction(self, handle):
        handle.begin()
        with handle.transaction():
            handle.execute('DELETE FROM contact_detail WHERE person_id=?', [9])
        assert handle.in_transaction()
        handle.rollback()
        assert handle.execute('SELECT COUNT(*) FROM contact_detail WHERE person_id=?', [9]) == [(3,)]
