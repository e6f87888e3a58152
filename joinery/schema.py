# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""
Schema descriptions and the registry that resolves them by entity type.

A `Schema` is the static metadata for one entity type: its table, its key
columns, its ordered columns and its links to other entity types. The order
of `Schema.columns` is the column position contract shared by the clause
compiler and the row materializer, so it is fixed at construction time.

A traversal path is the root entity type followed by the link names of a
descent, joined with underscores, e.g. ``Person_employer_employees``. Paths
double as SQL table aliases and as limit lookup keys.
"""

import threading
from collections import OrderedDict
from collections.abc import Mapping

from pockets import is_listy
from pockets.autolog import log
from sqlalchemy.types import TypeEngine

from joinery.exceptions import SchemaDefinitionError


__all__ = ['default_registry', 'join_path', 'Link', 'RESERVED_NAMES', 'Schema', 'SchemaRegistry']


# Public members of Entity, which would hide fields of the same name
RESERVED_NAMES = frozenset([
    'brandnew', 'get', 'is_loaded', 'items', 'keys', 'modified_columns', 'original_primary_key_values',
    'post_insert', 'post_select', 'post_update', 'pre_delete', 'pre_insert', 'pre_update', 'primary_key',
    'primary_key_values', 'serialized_key', 'session', 'state', 'to_dict'])


def _check_name(entity_type, name):
    if name.startswith('_') or name in RESERVED_NAMES:
        raise SchemaDefinitionError('{}.{} is a reserved name'.format(entity_type, name))


def join_path(parent_path, link_name):
    """
    Returns the traversal path of `link_name` beneath `parent_path`.

    >>> join_path('Person', 'employer')
    'Person_employer'
    """
    return '{}_{}'.format(parent_path, link_name)


def _check_limit(value, what):
    if isinstance(value, bool) or (isinstance(value, int) and value >= 0):
        return value
    raise SchemaDefinitionError(
        '{} must be True, False or a non-negative integer, not {!r}'.format(what, value))


def normalize_foreign_key(foreign_key):
    """
    Normalizes a foreign key definition into a tuple of column pairs.

    Each pair is ``(parent_column, child_column)``. A foreign key can be
    given as a single column name shared by both tables, a list of shared
    column names, a list of pairs, or a dict mapping parent columns to child
    columns::

        'company_id'
        ['person_id', 'type']
        [('company_id', 'id')]
        {'company_id': 'id'}

    >>> normalize_foreign_key('company_id')
    (('company_id', 'company_id'),)
    >>> normalize_foreign_key({'employer_id': 'company_id'})
    (('employer_id', 'company_id'),)

    Raises:
        SchemaDefinitionError: If the definition is empty or malformed, since that
            would produce a join without any join conditions.
    """
    if isinstance(foreign_key, str):
        pairs = [(foreign_key, foreign_key)]
    elif isinstance(foreign_key, Mapping):
        pairs = list(foreign_key.items())
    elif is_listy(foreign_key):
        pairs = []
        for item in foreign_key:
            if isinstance(item, str):
                pairs.append((item, item))
            elif is_listy(item) and len(item) == 2:
                pairs.append(tuple(item))
            else:
                raise SchemaDefinitionError('Malformed foreign key component: {!r}'.format(item))
    else:
        raise SchemaDefinitionError('Malformed foreign key: {!r}'.format(foreign_key))

    if not pairs:
        raise SchemaDefinitionError('A foreign key must name at least one column')
    for parent_column, child_column in pairs:
        if not (isinstance(parent_column, str) and isinstance(child_column, str)) \
                or not parent_column or not child_column:
            raise SchemaDefinitionError('Malformed foreign key component: {!r}'.format(
                (parent_column, child_column)))
    return tuple(pairs)


class Link(object):
    """
    A declared relationship from one entity type to another.

    Args:
        target (str or class): The entity type of the linked objects.
        foreign_key: The join key, see `normalize_foreign_key`.
        nullable (bool): Whether the link may be absent. Nullable links are
            joined with LEFT OUTER JOIN.
        one_to_many (bool): Whether the link holds a collection.
        limits (dict): Per-path traversal limits, mapping traversal paths to
            True, False or a maximum depth. When given, paths missing from
            the table are never traversed.
        limit (int): Maximum depth at which the link is traversed.
    """

    def __init__(self, target, foreign_key, nullable=False, one_to_many=False, limits=None, limit=None):
        self.target = target if isinstance(target, str) else target.__name__
        self.foreign_key = normalize_foreign_key(foreign_key)
        self.nullable = bool(nullable)
        self.one_to_many = bool(one_to_many)
        self.limits = {path: _check_limit(v, 'Limit for {}'.format(path)) for path, v in (limits or {}).items()}
        self.limit = None if limit is None else _check_limit(limit, 'Global limit')
        if isinstance(self.limit, bool):
            raise SchemaDefinitionError('Global limit must be an integer, not {!r}'.format(limit))

    @property
    def cardinality(self):
        return 'one_to_many' if self.one_to_many else 'one_to_one'

    @property
    def parent_columns(self):
        return tuple(parent for parent, _ in self.foreign_key)

    @property
    def child_columns(self):
        return tuple(child for _, child in self.foreign_key)

    def join_condition(self, parent_path, child_path):
        """
        >>> Link('ContactDetail', ['person_id', 'type']).join_condition('Person', 'Person_details')
        'Person.person_id=Person_details.person_id AND Person.type=Person_details.type'
        """
        return ' AND '.join('{}.{}={}.{}'.format(parent_path, parent, child_path, child)
                            for parent, child in self.foreign_key)

    def __repr__(self):
        return '<Link target={!r} cardinality={!r} nullable={!r}>'.format(
            self.target, self.cardinality, self.nullable)


def normalize_columns(columns):
    """
    Normalizes a column definition into an ordered mapping of column to field name.

    >>> list(normalize_columns(['person_id', ('contact_type', 'type')]).items())
    [('person_id', 'person_id'), ('contact_type', 'type')]
    """
    normalized = OrderedDict()
    if isinstance(columns, Mapping):
        items = columns.items()
    elif is_listy(columns):
        items = [(c, True) if isinstance(c, str) else tuple(c) for c in columns]
    else:
        raise SchemaDefinitionError('Malformed column definition: {!r}'.format(columns))

    for column, field in items:
        if field is True:
            field = column
        if not isinstance(column, str) or not isinstance(field, str):
            raise SchemaDefinitionError('Malformed column: {!r}'.format((column, field)))
        if column in normalized:
            raise SchemaDefinitionError('Duplicate column: {}'.format(column))
        normalized[column] = field

    if not normalized:
        raise SchemaDefinitionError('A schema must have at least one column')
    if len(set(normalized.values())) != len(normalized):
        raise SchemaDefinitionError('Field names must be unique: {}'.format(list(normalized.values())))
    return normalized


class Schema(object):
    """
    Static metadata for one entity type.

    Schemas are immutable once constructed, so they can be shared between
    threads without locking.

    Args:
        entity_type (str): Logical type name, also the root table alias.
        table_name (str): Physical table name.
        key_columns (str or list): Physical names of the primary key columns.
        columns: Ordered column definition, see `normalize_columns`.
        links (dict): Ordered mapping of link name to `Link`.
        autoincrement (str): A key column filled in by the database on insert.
        column_types (dict): Mapping of column name to a SQLAlchemy type,
            see `joinery.types`.
        default_cache_ttl (int): Object cache lifetime used by `get_by_id`.
    """

    def __init__(self, entity_type, table_name, key_columns, columns, links=None, autoincrement=None,
                 column_types=None, default_cache_ttl=None):
        self.entity_type = entity_type
        self.table_name = table_name
        self.columns = normalize_columns(columns)
        self.fields = OrderedDict((field, column) for column, field in self.columns.items())
        for field in self.fields:
            _check_name(entity_type, field)

        if isinstance(key_columns, str):
            key_columns = [key_columns]
        if not is_listy(key_columns) or not key_columns \
                or not all(isinstance(k, str) and k for k in key_columns):
            raise SchemaDefinitionError('{} has an invalid key column definition: {!r}'.format(entity_type, key_columns))
        for column in key_columns:
            if column not in self.columns:
                raise SchemaDefinitionError('{} key column {} is not a column'.format(entity_type, column))
        self.key_columns = tuple(key_columns)

        self.links = OrderedDict(links.items() if isinstance(links, Mapping) else (links or []))
        for name, link in self.links.items():
            if not isinstance(link, Link):
                raise SchemaDefinitionError('{}.{} is not a Link: {!r}'.format(entity_type, name, link))
            _check_name(entity_type, name)
            if name in self.fields:
                raise SchemaDefinitionError('{}.{} is both a field and a link'.format(entity_type, name))
            for column in link.parent_columns:
                if column not in self.columns:
                    raise SchemaDefinitionError('{}.{} foreign key column {} is not a column'.format(
                        entity_type, name, column))

        if autoincrement is not None and autoincrement not in self.columns:
            raise SchemaDefinitionError('{} autoincrement column {} is not a column'.format(
                entity_type, autoincrement))
        self.autoincrement = autoincrement
        self.column_types = {}
        for column, column_type in (column_types or {}).items():
            if column not in self.columns:
                raise SchemaDefinitionError('{} has a type for unknown column {}'.format(entity_type, column))
            if isinstance(column_type, type) and issubclass(column_type, TypeEngine):
                column_type = column_type()
            if not isinstance(column_type, TypeEngine):
                raise SchemaDefinitionError('{}.{} type is not a SQLAlchemy type: {!r}'.format(
                    entity_type, column, column_type))
            self.column_types[column] = column_type
        self.default_cache_ttl = default_cache_ttl

    @property
    def key_fields(self):
        return tuple(self.columns[c] for c in self.key_columns)

    def column_list(self, path):
        return ['{}.{}'.format(path, column) for column in self.columns]

    def from_clause(self, path):
        return '{} {}'.format(self.table_name, path)

    def where_clause(self, path):
        """
        Returns the placeholder equality clause over the key columns.

        Composite keys are wrapped in parentheses so the clause can be
        combined with other criteria.
        """
        clauses = ['{}.{}=?'.format(path, column) for column in self.key_columns]
        if len(clauses) == 1:
            return clauses[0]
        return '({})'.format(' AND '.join(clauses))

    def __repr__(self):
        return '<Schema entity_type={!r} table_name={!r}>'.format(self.entity_type, self.table_name)


class SchemaRegistry(object):
    """
    Process-wide mapping of entity type to `Schema`.

    Registration is guarded by a lock and is expected to happen at import
    time. Lookups don't lock: once `freeze` has been called the registry
    no longer changes and may be read from any thread.
    """

    def __init__(self):
        self._schemas = {}
        self._node_classes = {}
        self._lock = threading.RLock()
        self._frozen = False

    @property
    def frozen(self):
        return self._frozen

    def register(self, schema, node_class=None):
        with self._lock:
            if self._frozen:
                raise SchemaDefinitionError('Cannot register {} with a frozen registry'.format(schema.entity_type))
            existing = self._schemas.get(schema.entity_type)
            if existing is not None and existing is not schema:
                raise SchemaDefinitionError('{} is already registered'.format(schema.entity_type))
            if node_class is not None:
                for name in list(schema.fields) + list(schema.links):
                    if hasattr(node_class, name):
                        raise SchemaDefinitionError('{}.{} is hidden by an attribute of {}'.format(
                            schema.entity_type, name, node_class.__name__))
            self._schemas[schema.entity_type] = schema
            if node_class is not None:
                self._node_classes[schema.entity_type] = node_class
            log.debug('Registered {!r}', schema)
        return schema

    def resolve(self, entity_type):
        """
        Returns the `Schema` registered for `entity_type`.

        Args:
            entity_type (str or class): An entity type name, or a node class
                carrying a ``__schema__``.
        """
        if not isinstance(entity_type, str):
            schema = getattr(entity_type, '__schema__', None)
            if schema is None:
                raise SchemaDefinitionError('{!r} is not an entity type'.format(entity_type))
            entity_type = schema.entity_type
        try:
            return self._schemas[entity_type]
        except KeyError:
            raise SchemaDefinitionError('Unknown entity type: {}'.format(entity_type))

    def node_class(self, entity_type):
        """Returns the class registered for `entity_type`, if any."""
        return self._node_classes.get(self.resolve(entity_type).entity_type)

    def validate(self):
        """
        Checks that every link resolves to a registered schema with the
        child side foreign key columns.
        """
        for schema in list(self._schemas.values()):
            for name, link in schema.links.items():
                target = self._schemas.get(link.target)
                if target is None:
                    raise SchemaDefinitionError('{}.{} links to unknown entity type {}'.format(
                        schema.entity_type, name, link.target))
                for column in link.child_columns:
                    if column not in target.columns:
                        raise SchemaDefinitionError('{}.{} foreign key column {} is not a column of {}'.format(
                            schema.entity_type, name, column, target.entity_type))

    def freeze(self):
        with self._lock:
            self.validate()
            self._frozen = True

    def __contains__(self, entity_type):
        return entity_type in self._schemas

    def __iter__(self):
        return iter(list(self._schemas.values()))

    def __len__(self):
        return len(self._schemas)


default_registry = SchemaRegistry()
