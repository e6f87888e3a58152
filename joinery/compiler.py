# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""
Compiles a schema graph into a single multi-join SELECT statement.

The compiler walks the links of a schema depth first, in declaration order,
asking a `TraversalPolicy` at every link whether to descend. Each schema
visited contributes its columns, in declaration order, to the SELECT list
and its table to the FROM clause, aliased by its traversal path::

    SELECT Person.person_id, ..., Person_employer.company_id, ...
    FROM person Person
    LEFT OUTER JOIN company Person_employer
        ON Person.company_id=Person_employer.company_id
    WHERE Person.person_id=?

The resulting column order is the contract the row materializer relies on.
"""

import threading
from collections import namedtuple

from pockets.autolog import log

from joinery.exceptions import BadParameterError
from joinery.schema import join_path


__all__ = [
    'by_id_cache_key', 'compile_by_id', 'compile_clauses', 'compile_criteria', 'compile_link',
    'criteria_cache_key', 'link_cache_key', 'Clauses', 'QueryCache']


Clauses = namedtuple('Clauses', ['columns', 'from_clause', 'where'])


def compile_clauses(registry, entity_type, policy, path=None, depth=0, join_condition=None,
                    null_tainted=False, history=()):
    """
    Recursively compiles the columns, FROM clause and WHERE clause.

    Args:
        registry (SchemaRegistry): Resolves link targets.
        entity_type (str or class): The entity type at this level.
        policy (TraversalPolicy): Decides which links are followed.
        path (str): The traversal path of this level, which is also its
            table alias. Defaults to the entity type.
        depth (int): Depth of this level, the root is at 0.
        join_condition (str): The ON condition joining this level to its
            parent.
        null_tainted (bool): Whether this level is outer joined, directly or
            through an ancestor.
        history (tuple): Entity types on the path above this level.

    Returns:
        Clauses: The SELECT columns as a list, the FROM clause, and at depth
            0 the key equality WHERE clause. The root's own columns are left
            out when the policy forces a path.
    """
    schema = registry.resolve(entity_type)
    path = path or schema.entity_type
    history = history + (schema.entity_type,)

    if depth == 0 and policy.forced_path:
        columns = []
    else:
        columns = schema.column_list(path)

    from_clause = schema.from_clause(path)
    if join_condition:
        # The ON condition has to follow its own JOIN, before any joins of
        # the descendants are appended.
        from_clause += ' ON ' + join_condition

    for name, link in schema.links.items():
        link_path = join_path(path, name)
        if not policy.allows(link, link_path, depth, history):
            continue
        outer = null_tainted or link.nullable
        child = compile_clauses(
            registry, link.target, policy, link_path, depth + 1,
            link.join_condition(path, link_path), outer, history)
        columns.extend(child.columns)
        from_clause += (' LEFT OUTER JOIN ' if outer else ' INNER JOIN ') + child.from_clause

    where = schema.where_clause(path) if depth == 0 else None
    return Clauses(columns, from_clause, where)


def build_select(columns, from_clause, where=None, group_by=None, order_by=None):
    if not columns:
        raise BadParameterError('Nothing to select from {}'.format(from_clause))
    sql = 'SELECT {} FROM {}'.format(', '.join(columns), from_clause)
    if where:
        sql += ' WHERE ' + where
    if group_by:
        sql += ' GROUP BY ' + group_by
    if order_by:
        sql += ' ORDER BY ' + order_by
    return sql


def by_id_cache_key(entity_type, policy):
    return entity_type, 'by_id', policy.cache_key


def criteria_cache_key(entity_type, fragments, policy, order_by=None, group_by=None):
    """
    Keys the compiled SQL of a criteria query.

    Every part is kept as a separate tuple member, so criteria can't run
    together into the key of a different query.

    >>> from joinery.limits import TraversalPolicy
    >>> criteria_cache_key('Person', ['Person.last_name=?'], TraversalPolicy(), order_by='Person.first_name')
    ('Person', 'criteria', ('Person.last_name=?',), 'Person.first_name', None, ((), 16))
    """
    return entity_type, 'criteria', tuple(fragments), order_by, group_by, policy.cache_key


def link_cache_key(entity_type, policy):
    return entity_type, 'link', policy.forced_path, policy.cache_key


def compile_by_id(registry, entity_type, policy):
    clauses = compile_clauses(registry, entity_type, policy)
    return build_select(clauses.columns, clauses.from_clause, clauses.where)


def compile_criteria(registry, entity_type, policy, fragments, order_by=None, group_by=None):
    clauses = compile_clauses(registry, entity_type, policy)
    where = ' AND '.join(fragments) if fragments else None
    return build_select(clauses.columns, clauses.from_clause, where, group_by, order_by)


def compile_link(registry, entity_type, policy):
    """
    Compiles the query loading the forced path of `policy` for one node.

    The root's key equality clause selects the owning node, and only the
    columns of the forced subtree are selected.
    """
    if not policy.forced_path:
        raise BadParameterError('A forced path is required to compile a link query')
    clauses = compile_clauses(registry, entity_type, policy)
    return build_select(clauses.columns, clauses.from_clause, clauses.where)


class QueryCache(object):
    """
    Compiled SQL keyed by traversal shape.

    Entries are only ever added, and a key always compiles to the same SQL,
    so a lookup needs no lock. Inserts are serialized so a racing compile
    can't replace an entry another thread is already using.
    """

    def __init__(self):
        self._queries = {}
        self._lock = threading.Lock()

    def get_or_compile(self, key, compile_fn):
        sql = self._queries.get(key)
        if sql is None:
            sql = compile_fn()
            with self._lock:
                sql = self._queries.setdefault(key, sql)
            log.debug('Compiled {}: {}', key, sql)
        return sql

    def clear(self):
        with self._lock:
            self._queries.clear()

    def __contains__(self, key):
        return key in self._queries

    def __getitem__(self, key):
        return self._queries[key]

    def __len__(self):
        return len(self._queries)
