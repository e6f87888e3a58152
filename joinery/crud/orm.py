# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""
Persistence for entity nodes.

Only the columns of the node itself are written; linked nodes are saved
separately. Every statement runs in a transaction on the session's handle.
"""

from pockets.autolog import log

from joinery.exceptions import ModelIncompatibilityError
from joinery.types import to_db


__all__ = ['delete', 'save', 'SAVE_MODES']


SAVE_MODES = ('insert', 'replace', 'update')


def _to_db(handle, schema, column, value):
    column_type = schema.column_types.get(column)
    return value if column_type is None else to_db(column_type, value, handle.dialect)


def _key_clause(schema):
    return ' AND '.join('{}=?'.format(column) for column in schema.key_columns)


def save(session, node, mode=None):
    """
    Writes `node` to the database.

    Unless `mode` says otherwise, a new node is written with REPLACE, a
    loaded node with modified columns is written with UPDATE, and a loaded
    node without modifications isn't written at all.

    Args:
        session (Session): The session whose handle is used.
        node (Entity): The node to save.
        mode (str): Force one of ``'insert'``, ``'replace'`` or
            ``'update'``.

    Returns:
        str: The statement that was issued, ``'insert'``, ``'replace'`` or
            ``'update'``, or ``'noop'`` if nothing needed writing.
    """
    if mode is None:
        if node.brandnew:
            mode = 'replace'
        elif node.modified_columns:
            mode = 'update'
        else:
            log.debug('{!r} is unmodified, not saving', node)
            return 'noop'
    elif mode not in SAVE_MODES:
        raise ValueError('Unknown save mode {!r}, expected one of {}'.format(mode, SAVE_MODES))

    with session.handle.transaction() as handle:
        if mode == 'update':
            return _update(handle, node)
        return _insert(handle, node, mode)


def _insert(handle, node, mode):
    schema = node.__schema__
    node.pre_insert()

    columns = [c for c in schema.columns
               if c != schema.autoincrement or node.get(schema.columns[c]) is not None]
    if any(node.get(schema.columns[c]) is None for c in schema.key_columns if c != schema.autoincrement):
        raise ValueError('Cannot insert {!r} with a null primary key column'.format(node))

    sql = '{} INTO {} ({}) VALUES ({})'.format(
        'REPLACE' if mode == 'replace' else 'INSERT',
        schema.table_name,
        ', '.join(columns),
        ', '.join('?' for _ in columns))
    handle.execute(sql, [_to_db(handle, schema, c, node.get(schema.columns[c])) for c in columns])

    if schema.autoincrement and node.get(schema.columns[schema.autoincrement]) is None:
        node[schema.columns[schema.autoincrement]] = handle.last_insert_id()

    node._mark_saved()
    node.post_insert()
    log.debug('Saved {!r} with {}', node, mode)
    return mode


def _update(handle, node):
    schema = node.__schema__
    node.pre_update()

    columns = node.modified_columns
    if not columns:
        log.debug('{!r} has no modified columns, not updating', node)
        return 'noop'

    sql = 'UPDATE {} SET {} WHERE {}'.format(
        schema.table_name,
        ', '.join('{}=?'.format(c) for c in columns),
        _key_clause(schema))
    params = [_to_db(handle, schema, c, node.get(schema.columns[c])) for c in columns]
    params.extend(_to_db(handle, schema, c, v) for c, v in zip(schema.key_columns, node.original_primary_key_values()))
    handle.execute(sql, params)

    if handle.affected_rows() > 1:
        raise ModelIncompatibilityError('Updating {!r} changed {} rows'.format(node, handle.affected_rows()))

    node._mark_saved()
    node.post_update()
    log.debug('Updated {!r}: {}', node, columns)
    return 'update'


def delete(session, node):
    """
    Deletes the row of `node` by primary key. Linked rows aren't touched.

    Returns:
        int: The number of rows deleted.
    """
    schema = node.__schema__
    values = node.original_primary_key_values()
    if all(v is None for v in values):
        raise ValueError('Cannot delete {!r} without a primary key'.format(node))

    node.pre_delete()
    with session.handle.transaction() as handle:
        handle.execute(
            'DELETE FROM {} WHERE {}'.format(schema.table_name, _key_clause(schema)),
            [_to_db(handle, schema, c, v) for c, v in zip(schema.key_columns, values)])
        deleted = handle.affected_rows()
        if deleted > 1:
            raise ModelIncompatibilityError('Deleting {!r} removed {} rows'.format(node, deleted))
    log.debug('Deleted {!r}', node)
    return deleted
