# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""
Decompiles flat result rows back into entity trees.

The materializer walks the schema graph exactly the way the clause compiler
does, consuming each schema's columns from a `RowCursor` in declaration
order. Where the compiler joined a link but the row carries nothing for it,
either because the parent's foreign key is null or because the outer join
found no match, the skip walker advances the cursor past the whole subtree
without building any nodes.

Rows that repeat a primary key already seen only add one-to-many children
to the nodes built from earlier rows. One row per distinct child is the
shape SQL gives a one-to-many join, so the rows of one root arrive as the
cross product of its collections.
"""

from collections import OrderedDict

from pockets.autolog import log

from joinery.entity import new_node, OneToMany, OneToOne
from joinery.exceptions import ModelIncompatibilityError
from joinery.schema import join_path
from joinery.types import DEFAULT_DIALECT, from_db


__all__ = ['Materializer', 'RowCursor']


class RowCursor(object):
    """
    Read position within one result row.

    >>> cursor = RowCursor((9, 'Tom', 'Gidden'))
    >>> cursor.take(2)
    (9, 'Tom')
    >>> cursor.skip(1)
    >>> cursor.at_end
    True
    """

    def __init__(self, row):
        self.row = tuple(row)
        self.position = 0

    def take(self, count):
        end = self.position + count
        if end > len(self.row):
            raise ModelIncompatibilityError(
                'Row has {} columns but the schema needs at least {}'.format(len(self.row), end))
        values = self.row[self.position:end]
        self.position = end
        return values

    def skip(self, count):
        self.take(count)

    @property
    def at_end(self):
        return self.position == len(self.row)


class Materializer(object):
    """
    Builds entity trees from rows compiled with the same `TraversalPolicy`.

    Args:
        registry (SchemaRegistry): Resolves link targets.
        policy (TraversalPolicy): Must be the policy the query was compiled
            with, or the cursor will drift out of step with the columns.
        session: Attached to every node built, for deferred link loads.
        dialect: Selects the result processors of typed columns.
    """

    def __init__(self, registry, policy, session=None, dialect=None):
        self.registry = registry
        self.policy = policy
        self.session = session
        self.dialect = DEFAULT_DIALECT if dialect is None else dialect

    def consume_columns(self, node, schema, cursor):
        """Reads exactly one value per column of `schema` into `node`."""
        values = cursor.take(len(schema.columns))
        if schema.column_types:
            values = [from_db(schema.column_types[column], value, self.dialect) if column in schema.column_types
                      else value
                      for column, value in zip(schema.columns, values)]
        node._load_scalars(values)

    def consume_links(self, node, schema, cursor, depth, path, history=()):
        """
        Reads the linked subtrees of `node` from the rest of the row.

        Links are visited in declaration order, and only where the policy
        allows them, so the cursor follows the compiled column order.
        """
        history = history + (schema.entity_type,)
        for name, link in schema.links.items():
            link_path = join_path(path, name)
            if not self.policy.allows(link, link_path, depth, history):
                continue

            target = self.registry.resolve(link.target)
            slot = node._get_slot(name)
            if slot is None:
                slot = OneToMany() if link.one_to_many else OneToOne()
                node._set_slot(name, slot)

            if any(node.get(schema.columns[column]) is None for column in link.parent_columns):
                # A null foreign key means the joined columns are all null
                self.skip_subtree(target, cursor, depth + 1, link_path, history)
                continue

            candidate = new_node(self.registry, target.entity_type, self.session)
            self.consume_columns(candidate, target, cursor)
            key = candidate.primary_key
            if key is None:
                if not link.nullable:
                    raise ModelIncompatibilityError(
                        '{} is not nullable but {!r} has no matching {}'.format(link_path, node, link.target))
                self._skip_links(target, cursor, depth + 1, link_path, history)
                continue

            if link.one_to_many:
                child = slot.nodes.setdefault(key, candidate)
            elif slot.node is None:
                child = slot.node = candidate
            elif slot.node.primary_key != key:
                raise ModelIncompatibilityError(
                    '{} is one-to-one but {!r} links to both {!r} and {!r}'.format(
                        link_path, node, slot.node.primary_key, key))
            else:
                child = slot.node

            self.consume_links(child, target, cursor, depth + 1, link_path, history)
            if child is candidate:
                child.post_select()

    def skip_subtree(self, schema, cursor, depth, path, history=()):
        """
        Advances `cursor` past the columns of `schema` and of every linked
        schema the policy allows beneath it.
        """
        cursor.skip(len(schema.columns))
        self._skip_links(schema, cursor, depth, path, history)

    def _skip_links(self, schema, cursor, depth, path, history):
        history = history + (schema.entity_type,)
        for name, link in schema.links.items():
            link_path = join_path(path, name)
            if self.policy.allows(link, link_path, depth, history):
                self.skip_subtree(self.registry.resolve(link.target), cursor, depth + 1, link_path, history)

    def _check_consumed(self, cursor):
        if not cursor.at_end:
            raise ModelIncompatibilityError(
                'Row has {} columns but the schema only accounts for {}'.format(len(cursor.row), cursor.position))

    def materialize(self, entity_type, rows):
        """
        Groups `rows` by root primary key and builds one tree per key.

        Args:
            entity_type (str or class): The root entity type.
            rows (iterable): Rows matching the compiled column order.

        Returns:
            OrderedDict: Root nodes keyed by primary key, in order of first
                appearance.
        """
        schema = self.registry.resolve(entity_type)
        path = schema.entity_type
        results = OrderedDict()
        count = 0
        for row in rows:
            count += 1
            cursor = RowCursor(row)
            candidate = new_node(self.registry, schema.entity_type, self.session)
            self.consume_columns(candidate, schema, cursor)
            key = candidate.primary_key
            if key is None:
                raise ModelIncompatibilityError('Row {} has a null primary key for {}'.format(count, path))

            node = results.setdefault(key, candidate)
            self.consume_links(node, schema, cursor, 0, path)
            self._check_consumed(cursor)
            if node is candidate:
                node.post_select()

        log.debug('Materialized {} {} node(s) from {} row(s)', len(results), path, count)
        return results

    def materialize_into(self, node, rows):
        """
        Folds the links selected by a forced path query into `node`.

        The rows carry no columns for `node` itself, only for the forced
        subtree beneath it.
        """
        schema = node.__schema__
        count = 0
        for row in rows:
            count += 1
            cursor = RowCursor(row)
            self.consume_links(node, schema, cursor, 0, schema.entity_type)
            self._check_consumed(cursor)
        log.debug('Materialized {} from {} row(s)', self.policy.forced_path, count)
        return node
