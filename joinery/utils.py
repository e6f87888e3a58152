# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""SQL text and parameter utilities."""

import re
import uuid
from datetime import date, datetime, time
from decimal import Decimal


__all__ = [
    'fingerprint_sql', 'is_scalar', 'rewrite_placeholders', 'NAMESPACE_SQL',
    'SCALAR_TYPES']


NAMESPACE_SQL = uuid.UUID('75c7e3be-a5c7-414d-bc66-d64ae5d03f3d')
SCALAR_TYPES = (int, float, bool, Decimal, datetime, date, time, bytes, str, uuid.UUID)

_single_quote_whitespace = re.compile(r"\s+(?=([^']*'[^']*')*[^']*$)")
_quoted_literal = re.compile(r"('(?:[^']|'')*')")


def fingerprint_sql(sqltext):
    """
    Returns the uuid5 hexdigest of a normalized version of `sqltext`.

    Normalization involves replacing all substrings of non-single quoted
    whitespace with a single space. The namespace used to create the uuid5
    is `NAMESPACE_SQL`::

        uuid.UUID('75c7e3be-a5c7-414d-bc66-d64ae5d03f3d')

    >>> fingerprint_sql("select * from user where name = 'Foo    Bar'")
    'b23bfc4cc7ad535ba6463473669f6597'

    >>> fingerprint_sql('''
    ... select *
    ... from user
    ... where name = 'Foo    Bar'
    ... ''')
    'b23bfc4cc7ad535ba6463473669f6597'

    Args:
        sqltext (str): Some raw SQL string.

    Returns:
        str: A 32 character hex uuid5 of a normalized version of `sqltext`.
    """
    sqltext = _single_quote_whitespace.sub(' ', sqltext).strip()
    return uuid.uuid5(NAMESPACE_SQL, sqltext).hex


def is_scalar(value):
    """
    Returns True if `value` can be bound directly as a SQL parameter.

    >>> is_scalar('Tom'), is_scalar(9), is_scalar(None)
    (True, True, False)
    >>> is_scalar(['Tom'])
    False
    """
    return isinstance(value, SCALAR_TYPES)


def rewrite_placeholders(sqltext, params, paramstyle='qmark'):
    """
    Rewrites the ``?`` placeholders in `sqltext` for a DBAPI `paramstyle`.

    Queries are always written with ``?`` placeholders. Question marks inside
    single quoted literals are left alone.

    >>> rewrite_placeholders('SELECT a FROM t WHERE a=? AND b=?', [1, 2], 'format')
    ('SELECT a FROM t WHERE a=%s AND b=%s', (1, 2))
    >>> rewrite_placeholders("SELECT '?' FROM t WHERE a=?", [1], 'named')
    ("SELECT '?' FROM t WHERE a=:p1", {'p1': 1})

    Args:
        sqltext (str): SQL using ``?`` placeholders.
        params (list): Positional parameter values.
        paramstyle (str): One of the DBAPI 2.0 paramstyles.

    Returns:
        tuple: The rewritten SQL and the parameters in the form the driver
            expects, a tuple for positional styles or a dict for named ones.
    """
    params = tuple(params or ())
    if paramstyle == 'qmark':
        return sqltext, params
    elif paramstyle not in ('format', 'pyformat', 'numeric', 'named'):
        raise ValueError('Unsupported paramstyle: {}'.format(paramstyle))

    # Drivers only interpolate percent signs when given parameters
    escape_percent = paramstyle in ('format', 'pyformat') and bool(params)

    counter = [0]

    def _next(match):
        counter[0] += 1
        if paramstyle in ('format', 'pyformat'):
            return '%s'
        elif paramstyle == 'numeric':
            return ':{}'.format(counter[0])
        return ':p{}'.format(counter[0])

    parts = []
    for part in _quoted_literal.split(sqltext):
        if escape_percent:
            part = part.replace('%', '%%')
        if not part.startswith("'"):
            part = re.sub(r'\?', _next, part)
        parts.append(part)

    if counter[0] != len(params):
        raise ValueError('Expected {} parameters but got {}'.format(counter[0], len(params)))

    if paramstyle == 'named':
        return ''.join(parts), {'p{}'.format(i + 1): v for i, v in enumerate(params)}
    return ''.join(parts), params
