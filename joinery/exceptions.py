# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""Exceptions raised by the schema mapping engine.

None of these are retried or recovered from internally; every one of them
aborts the get or save operation in which it was raised.
"""

__all__ = [
    'JoineryException', 'SchemaDefinitionError', 'ModelIncompatibilityError',
    'QueryError', 'BadCriteriaError', 'BadParameterError', 'TooManyResultsError']


class JoineryException(Exception):
    pass


class SchemaDefinitionError(JoineryException):
    """
    A schema description is malformed, e.g. a foreign key definition that would
    produce zero join conditions, or a key column that isn't a column.
    """


class ModelIncompatibilityError(JoineryException):
    """
    The rows returned by the database don't fit the declared schema.

    Raised when a one-to-one link sees two different child keys for the same
    parent, when a non-nullable link produced a null-padded row, when a row
    doesn't match the compiled column contract, or when a by-key load or
    update touches more than one row.
    """


class QueryError(JoineryException):
    """
    The underlying database connection failed to execute a statement.

    The driver exception is available as ``__cause__``.
    """

    def __init__(self, message, sql=None, params=None):
        super(QueryError, self).__init__(message)
        self.sql = sql
        self.params = params


class BadCriteriaError(JoineryException):
    pass


class BadParameterError(JoineryException):
    pass


class TooManyResultsError(JoineryException):
    pass
