# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""Query surface for loading entity trees."""

from functools import wraps
from collections.abc import Mapping

from pockets import is_listy
from pockets.autolog import log

from joinery.crud import orm
from joinery.compiler import by_id_cache_key, compile_by_id, compile_clauses, compile_criteria, \
    compile_link, criteria_cache_key, link_cache_key, QueryCache
from joinery.entity import new_node, OneToMany, OneToOne
from joinery.exceptions import BadCriteriaError, BadParameterError, JoineryException, \
    ModelIncompatibilityError, TooManyResultsError
from joinery.limits import TraversalPolicy
from joinery.materializer import Materializer
from joinery.schema import default_registry, join_path
from joinery.types import to_db
from joinery.utils import is_scalar


__all__ = ['crud_exceptions', 'normalize_criteria', 'normalize_key', 'normalize_params', 'Session']


_NO_PARAMS = object()


def crud_exceptions(fn):
    """
    A decorator which logs the errors raised by the query surface.

    Errors are re-raised unchanged so callers can handle each kind.
    """
    @wraps(fn)
    def wrapped(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except JoineryException:
            a = [x for x in (args or [])]
            kw = {k: v for k, v in (kwargs or {}).items()}
            log.error('Error calling {}.{} {!r} {!r}'.format(fn.__module__, fn.__name__, a, kw), exc_info=True)
            raise
    return wrapped


def normalize_params(value):
    """
    Expands a criterion value into a list of positional parameters.

    A value may be a scalar, None, or a list or tuple of those, which is
    expanded in order::

        'Gidden'      -> ['Gidden']
        None          -> [None]
        (9, 11)       -> [9, 11]

    >>> normalize_params((9, 11))
    [9, 11]

    Raises:
        BadParameterError: For any other type of value.
    """
    if value is None or is_scalar(value):
        return [value]
    elif isinstance(value, (list, tuple)):
        for item in value:
            if item is not None and not is_scalar(item):
                raise BadParameterError('Unsupported parameter value: {!r}'.format(item))
        return list(value)
    raise BadParameterError('Unsupported parameter value: {!r}'.format(value))


def normalize_criteria(criteria):
    """
    Normalizes criteria into a list of SQL fragments and a list of params.

    Criteria can be a mapping of SQL fragments to values, or a sequence of
    raw fragments and ``(fragment, value)`` pairs. Integer keys in a mapping
    mark raw fragments without a value::

        {'Person.last_name=?': 'Gidden'}
        ['Person.company_id IS NOT NULL', ('Person.person_id BETWEEN ? AND ?', (9, 10))]
        {0: 'Person.company_id IS NOT NULL', 'Person.first_name=?': 'Tom'}

    >>> normalize_criteria({'Person.last_name=?': 'Gidden', 0: 'Person.company_id IS NOT NULL'})
    (['Person.last_name=?', 'Person.company_id IS NOT NULL'], ['Gidden'])

    Raises:
        BadCriteriaError: If `criteria` or any of its fragments is
            malformed.
        BadParameterError: If a value is not a scalar, None, or a list of
            scalars.
    """
    if criteria is None:
        return [], []

    if isinstance(criteria, Mapping):
        items = []
        for key, value in criteria.items():
            if isinstance(key, int) and not isinstance(key, bool):
                items.append((value, _NO_PARAMS))
            else:
                items.append((key, value))
    elif isinstance(criteria, (list, tuple)):
        items = []
        for item in criteria:
            if isinstance(item, str):
                items.append((item, _NO_PARAMS))
            elif is_listy(item) and len(item) == 2:
                items.append(tuple(item))
            else:
                raise BadCriteriaError('Malformed criterion: {!r}'.format(item))
    else:
        raise BadCriteriaError('Criteria must be a mapping or a list, not {!r}'.format(criteria))

    fragments, params = [], []
    for fragment, value in items:
        if not isinstance(fragment, str) or not fragment.strip():
            raise BadCriteriaError('Malformed criterion: {!r}'.format(fragment))
        fragments.append(fragment)
        if value is not _NO_PARAMS:
            params.extend(normalize_params(value))
    return fragments, params


def normalize_key(schema, key):
    """
    Returns the key values for `schema` as a tuple in key column order.

    Raises:
        BadParameterError: If the number of values doesn't match the key
            columns, or a value is null or not a scalar.
    """
    values = tuple(key) if isinstance(key, (list, tuple)) else (key,)
    if len(values) != len(schema.key_columns):
        raise BadParameterError('{} has {} key column(s) but {} value(s) were given'.format(
            schema.entity_type, len(schema.key_columns), len(values)))
    for value in values:
        if value is None or not is_scalar(value):
            raise BadParameterError('Invalid key value for {}: {!r}'.format(schema.entity_type, value))
    return values


def bind_key(schema, values, dialect):
    return [to_db(schema.column_types[column], value, dialect) if column in schema.column_types else value
            for column, value in zip(schema.key_columns, values)]


class Session(object):
    """
    Loads entity trees over one `DatabaseHandle`.

    Sessions are normally created by a `joinery.SessionManager`. Every node
    a session loads keeps a reference to it, so links that were excluded by
    the traversal limits can be loaded later on demand.

    Args:
        handle (DatabaseHandle): The connection to query.
        registry (SchemaRegistry): Defaults to `default_registry`.
        max_depth (int): Hard ceiling on the traversal depth.
        cache: Optional object cache with ``get(key)`` and
            ``set(key, value, ttl)`` methods, used by `get_by_id`.
        query_cache (QueryCache): Compiled SQL, normally shared by every
            session of a `SessionManager`.
    """

    def __init__(self, handle, registry=None, max_depth=None, cache=None, query_cache=None):
        self.handle = handle
        self.registry = default_registry if registry is None else registry
        self.max_depth = max_depth
        self.cache = cache
        self.query_cache = QueryCache() if query_cache is None else query_cache

    def policy(self, entity_type, limit_overrides=None, forced_path=None):
        schema = self.registry.resolve(entity_type)
        return TraversalPolicy(limit_overrides, forced_path, self.max_depth, root=schema.entity_type)

    def materializer(self, policy):
        return Materializer(self.registry, policy, self, self.handle.dialect)

    def select_clauses(self, entity_type, limit_overrides=None):
        """
        Returns the compiled `Clauses` for `entity_type`.

        Useful for hand-writing SQL to pass to `get_from_query`, since the
        columns are in the order the materializer expects.
        """
        return compile_clauses(self.registry, entity_type, self.policy(entity_type, limit_overrides))

    @crud_exceptions
    def get_by_id(self, entity_type, key, cache_ttl=None):
        """
        Loads one entity tree by primary key.

        Args:
            entity_type (str or class): The root entity type.
            key: The key value, or a tuple of values for composite keys.
            cache_ttl (int): Object cache lifetime, defaults to the schema's
                `default_cache_ttl`. The object cache is only used when a
                lifetime is known and the session has a cache.

        Returns:
            Entity: The root node, or None if there is no such row.
        """
        schema = self.registry.resolve(entity_type)
        values = normalize_key(schema, key)

        ttl = schema.default_cache_ttl if cache_ttl is None else cache_ttl
        cache_key = None
        if self.cache is not None and ttl:
            cache_key = '{}__{}'.format(schema.entity_type, ','.join(str(v) for v in values))
            node = self.cache.get(cache_key)
            if node is not None:
                log.debug('Object cache hit for {}', cache_key)
                return node

        policy = self.policy(schema.entity_type)
        sql = self.query_cache.get_or_compile(
            by_id_cache_key(schema.entity_type, policy),
            lambda: compile_by_id(self.registry, schema.entity_type, policy))
        rows = self.handle.execute(sql, bind_key(schema, values, self.handle.dialect))
        if not rows:
            return None

        results = self.materializer(policy).materialize(schema.entity_type, rows)
        if len(results) > 1:
            raise ModelIncompatibilityError('{} rows with different keys matched {} {!r}'.format(
                len(results), schema.entity_type, values))
        node = next(iter(results.values()))

        if cache_key:
            self.cache.set(cache_key, node, ttl)
        return node

    @crud_exceptions
    def get_by_criteria(self, entity_type, criteria=None, limit_overrides=None, order_by=None, group_by=None):
        """
        Loads every entity tree matching `criteria`.

        Args:
            entity_type (str or class): The root entity type.
            criteria: SQL fragments ANDed together, see `normalize_criteria`.
                Fragments refer to tables by traversal path, e.g.
                ``Person_employer.company_name=?``.
            limit_overrides (dict): Per query traversal limits, mapping
                traversal paths to True, False or a maximum depth.
            order_by (str): Raw ORDER BY clause.
            group_by (str): Raw GROUP BY clause.

        Returns:
            OrderedDict: Root nodes keyed by primary key, in result order.
        """
        schema = self.registry.resolve(entity_type)
        fragments, params = normalize_criteria(criteria)
        policy = self.policy(schema.entity_type, limit_overrides)
        sql = self.query_cache.get_or_compile(
            criteria_cache_key(schema.entity_type, fragments, policy, order_by, group_by),
            lambda: compile_criteria(self.registry, schema.entity_type, policy, fragments, order_by, group_by))
        rows = self.handle.execute(sql, params)
        return self.materializer(policy).materialize(schema.entity_type, rows)

    @crud_exceptions
    def get_one_by_criteria(self, entity_type, criteria=None, limit_overrides=None, order_by=None,
                            group_by=None):
        """
        Like `get_by_criteria`, but returns a single node or None.

        Raises:
            TooManyResultsError: If more than one entity matched.
        """
        results = self.get_by_criteria(entity_type, criteria, limit_overrides, order_by, group_by)
        if len(results) > 1:
            raise TooManyResultsError('{} {} entities matched {!r}'.format(
                len(results), self.registry.resolve(entity_type).entity_type, criteria))
        return next(iter(results.values()), None)

    @crud_exceptions
    def get_from_query(self, entity_type, rows, limit_overrides=None):
        """
        Builds entity trees from rows of hand-written SQL.

        The rows must have the columns `select_clauses` returns for the same
        `limit_overrides`, in the same order.

        Returns:
            OrderedDict: Root nodes keyed by primary key.
        """
        policy = self.policy(entity_type, limit_overrides)
        return self.materializer(policy).materialize(entity_type, rows)

    @crud_exceptions
    def resolve_link(self, node, link_name):
        """
        Loads a link of `node` that was excluded when `node` was loaded.

        Only the joins needed to reach the link are compiled, keyed on the
        primary key of `node`. The rows are folded into a scratch copy of
        `node`, and the link is only attached to `node` once every row has
        been consumed, so a failure leaves `node` as it was.

        Returns:
            The linked node, None, or an OrderedDict of linked nodes.
        """
        schema = node.__schema__
        if link_name not in schema.links:
            raise KeyError('{} has no link named {}'.format(schema.entity_type, link_name))
        link = schema.links[link_name]
        if node.primary_key is None:
            raise ValueError('Cannot load {}.{} for a node without a primary key'.format(
                schema.entity_type, link_name))

        policy = self.policy(schema.entity_type, forced_path=join_path(schema.entity_type, link_name))
        sql = self.query_cache.get_or_compile(
            link_cache_key(schema.entity_type, policy),
            lambda: compile_link(self.registry, schema.entity_type, policy))
        rows = self.handle.execute(sql, bind_key(schema, node.primary_key_values(), self.handle.dialect))

        shadow = new_node(self.registry, schema.entity_type, self)
        shadow._load_scalars([node.get(field) for field in schema.columns.values()])
        self.materializer(policy).materialize_into(shadow, rows)

        slot = shadow._get_slot(link_name)
        if slot is None:
            slot = OneToMany() if link.one_to_many else OneToOne()
        node._set_slot(link_name, slot)
        return node[link_name]

    @crud_exceptions
    def save(self, node, mode=None):
        """Writes `node`, see `joinery.crud.orm.save`."""
        return orm.save(self, node, mode)

    @crud_exceptions
    def delete(self, node):
        return orm.delete(self, node)
