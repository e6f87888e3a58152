# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""
Entity tree nodes.

Every field of a node lives in a tagged slot: `Scalar` for column values,
`OneToOne` for a single linked node, and `OneToMany` for an ordered
collection of linked nodes keyed by their primary keys. A link slot only
exists once the link has been loaded, so a link that was loaded and found to
be empty is distinguishable from a link that was never loaded.
"""

from collections import OrderedDict
from collections.abc import Mapping

from pockets import is_listy, uncamel

from joinery.schema import default_registry, Schema


__all__ = ['entity', 'new_node', 'Entity', 'OneToMany', 'OneToOne', 'Scalar']


class Scalar(object):
    __slots__ = ('value',)

    def __init__(self, value=None):
        self.value = value

    def __repr__(self):
        return 'Scalar({!r})'.format(self.value)


class OneToOne(object):
    __slots__ = ('node',)

    def __init__(self, node=None):
        self.node = node

    def __repr__(self):
        return 'OneToOne({!r})'.format(self.node)


class OneToMany(object):
    __slots__ = ('nodes',)

    def __init__(self, nodes=None):
        self.nodes = OrderedDict() if nodes is None else nodes

    def __repr__(self):
        return 'OneToMany({!r})'.format(list(self.nodes.values()))


def _slot_value(slot):
    if isinstance(slot, Scalar):
        return slot.value
    elif isinstance(slot, OneToOne):
        return slot.node
    elif isinstance(slot, OneToMany):
        return slot.nodes
    raise TypeError('Unknown slot: {!r}'.format(slot))


def _same_value(column_type, old, new):
    if old is None or new is None or column_type is None:
        return old == new
    return column_type.compare_values(old, new)


_generated_classes = {}


def _collection_key(node):
    key = node.primary_key
    return id(node) if key is None else key


class Entity(object):
    """
    A node of an entity tree.

    Subclasses are bound to a `Schema` with the `entity` decorator. Fields
    and links are available both as items and as attributes::

        person = session.get_by_id(Person, 9)
        person['first_name'] == person.first_name
        person.employer.name
        for key, detail in person.details.items():
            ...

    Reading a link that wasn't loaded with the node triggers a deferred load
    through the session that loaded the node.

    Subclasses may define the hooks `post_select`, `pre_insert`,
    `post_insert`, `pre_update`, `post_update` and `pre_delete`.
    """
    __schema__ = None

    def __init__(self, _session=None, **fields):
        if self.__schema__ is None:
            raise TypeError('{} is not bound to a schema; use the @entity decorator'.format(
                self.__class__.__name__))
        self._slots = OrderedDict()
        self._session = _session
        self._new = True
        self._modified = set()
        self._original = {}
        for name, value in fields.items():
            self[name] = value

    @classmethod
    def _blank(cls, session=None):
        node = cls.__new__(cls)
        Entity.__init__(node, _session=session)
        return node

    def _load_scalars(self, values):
        schema = self.__schema__
        for column, value in zip(schema.columns, values):
            self._slots[schema.columns[column]] = Scalar(value)
        self._new = False
        self._modified.clear()
        self._original.clear()

    def _mark_saved(self):
        self._new = False
        self._modified.clear()
        self._original.clear()

    def _get_slot(self, name):
        return self._slots.get(name)

    def _set_slot(self, name, slot):
        self._slots[name] = slot

    @property
    def session(self):
        return self._session

    @property
    def brandnew(self):
        return self._new

    @property
    def modified_columns(self):
        """Physical names of the columns set since the node was loaded."""
        return [c for c in self.__schema__.columns if c in self._modified]

    @property
    def state(self):
        if self._new:
            return 'new'
        return 'modified' if self._modified else 'loaded'

    def primary_key_values(self):
        schema = self.__schema__
        return tuple(self.get(field) for field in schema.key_fields)

    @property
    def primary_key(self):
        """
        The structured primary key.

        This is the key value for single column keys, a tuple for composite
        keys, and None when every key component is null.
        """
        values = self.primary_key_values()
        if all(v is None for v in values):
            return None
        return values[0] if len(values) == 1 else values

    @property
    def serialized_key(self):
        """The key components joined by commas, for use in cache keys."""
        values = self.primary_key_values()
        if all(v is None for v in values):
            return None
        return ','.join('' if v is None else str(v) for v in values)

    def original_primary_key_values(self):
        """The key values as they were when the node was loaded or saved."""
        schema = self.__schema__
        return tuple(self._original[column] if column in self._original else self.get(schema.columns[column])
                     for column in schema.key_columns)

    def is_loaded(self, link_name):
        return link_name in self.__schema__.links and link_name in self._slots

    def get(self, name, default=None):
        """Returns a field value without triggering a deferred load."""
        slot = self._slots.get(name)
        return default if slot is None else _slot_value(slot)

    def __getitem__(self, name):
        schema = self.__schema__
        slot = self._slots.get(name)
        if slot is not None:
            return _slot_value(slot)

        if name in schema.fields:
            if self._new:
                return None
            raise KeyError('{} has no value for {}'.format(self.__class__.__name__, name))

        if name in schema.links:
            link = schema.links[name]
            if self._new:
                if not link.one_to_many:
                    return None
                self._slots[name] = OneToMany()
                return self._slots[name].nodes
            if self._session is None:
                raise KeyError('{}.{} was not loaded and the node is not attached to a session'.format(
                    self.__class__.__name__, name))
            self._session.resolve_link(self, name)
            return _slot_value(self._slots[name])

        raise KeyError('{} has no field or link named {}'.format(self.__class__.__name__, name))

    def __setitem__(self, name, value):
        schema = self.__schema__
        if name in schema.fields:
            if isinstance(value, Entity):
                raise TypeError('Cannot assign {!r} to field {}'.format(value, name))
            column = schema.fields[name]
            slot = self._slots.get(name)
            if not self._new and (slot is None or not _same_value(schema.column_types.get(column), slot.value, value)):
                self._modified.add(column)
                self._original.setdefault(column, None if slot is None else slot.value)
            self._slots[name] = Scalar(value)

        elif name in schema.links:
            link = schema.links[name]
            if value is None:
                self._slots[name] = OneToMany() if link.one_to_many else OneToOne()
            elif isinstance(value, Entity):
                if link.one_to_many:
                    raise TypeError('{}.{} is a one-to-many link; assign a list of nodes'.format(
                        self.__class__.__name__, name))
                self._check_target(link, value)
                for parent_column, child_column in link.foreign_key:
                    child_value = value.get(value.__schema__.columns[child_column])
                    if child_value is None:
                        raise ValueError('Cannot link {!r} with a null {}'.format(value, child_column))
                    self[schema.columns[parent_column]] = child_value
                self._slots[name] = OneToOne(value)
            elif link.one_to_many and (is_listy(value) or isinstance(value, Mapping)):
                children = list(value.values()) if isinstance(value, Mapping) else list(value)
                nodes = OrderedDict()
                for child in children:
                    self._check_target(link, child)
                    for parent_column, child_column in link.foreign_key:
                        parent_value = self.get(schema.columns[parent_column])
                        if parent_value is not None:
                            child[child.__schema__.columns[child_column]] = parent_value
                    nodes[_collection_key(child)] = child
                self._slots[name] = OneToMany(nodes)
            else:
                raise TypeError('Cannot assign {!r} to link {}'.format(value, name))

        else:
            raise KeyError('{} has no field or link named {}'.format(self.__class__.__name__, name))

    def _check_target(self, link, value):
        if not isinstance(value, Entity) or value.__schema__.entity_type != link.target:
            raise TypeError('Expected a {} node, got {!r}'.format(link.target, value))

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        schema = self.__class__.__schema__
        if schema is not None and (name in schema.fields or name in schema.links):
            try:
                return self[name]
            except KeyError as e:
                raise AttributeError(str(e))
        raise AttributeError('{} object has no attribute {}'.format(self.__class__.__name__, name))

    def __setattr__(self, name, value):
        schema = self.__class__.__schema__
        if not name.startswith('_') and schema is not None and (name in schema.fields or name in schema.links):
            self[name] = value
        else:
            object.__setattr__(self, name, value)

    def __contains__(self, name):
        return name in self._slots

    def keys(self):
        return list(self._slots.keys())

    def items(self):
        return [(name, _slot_value(slot)) for name, slot in self._slots.items()]

    def to_dict(self):
        """
        Returns the loaded fields and links as plain nested dicts.

        One-to-many links become lists in arrival order.
        """
        d = OrderedDict()
        for name, slot in self._slots.items():
            if isinstance(slot, Scalar):
                d[name] = slot.value
            elif isinstance(slot, OneToOne):
                d[name] = None if slot.node is None else slot.node.to_dict()
            else:
                d[name] = [child.to_dict() for child in slot.nodes.values()]
        return d

    def post_select(self):
        pass

    def pre_insert(self):
        pass

    def post_insert(self):
        pass

    def pre_update(self):
        pass

    def post_update(self):
        pass

    def pre_delete(self):
        pass

    def __repr__(self):
        """
        Useful string representation for logging.
        """
        attr_names = self.__schema__.key_fields if self.__schema__ is not None else ()
        if attr_names:
            _kwarg_list = ' '.join('%s=%s' % (name, repr(self.get(name, 'undefined'))) for name in attr_names)
            kwargs_output = ' %s' % _kwarg_list
        else:
            kwargs_output = ''
        return '<%s%s>' % (self.__class__.__name__, kwargs_output)


def new_node(registry, entity_type, session=None):
    """
    Returns a blank, loaded-state node for `entity_type`.

    The class registered for the entity type is used, falling back to a
    plain `Entity` subclass bound to the schema.
    """
    schema = registry.resolve(entity_type)
    cls = registry.node_class(schema.entity_type)
    if cls is None:
        cls = _generated_classes.get(schema)
        if cls is None:
            cls = _generated_classes.setdefault(
                schema, type(schema.entity_type, (Entity,), {'__schema__': schema}))
    return cls._blank(session)


def entity(table_name=None, key=None, columns=None, links=None, autoincrement=None, column_types=None,
           default_cache_ttl=None, entity_type=None, registry=None):
    """
    Class decorator which binds an `Entity` subclass to a new `Schema`.

    The entity type defaults to the class name and the table name to the
    snake case class name::

        @entity(key='company_id', columns=['company_id', ('company_name', 'name')],
                links={'employees': Link('Person', 'company_id', nullable=True, one_to_many=True)})
        class Company(Entity):
            pass

    Args:
        registry (SchemaRegistry): Defaults to `default_registry`.
    """
    def _decorate(cls):
        schema = Schema(
            entity_type or cls.__name__,
            table_name or uncamel(cls.__name__),
            key,
            columns,
            links=links,
            autoincrement=autoincrement,
            column_types=column_types,
            default_cache_ttl=default_cache_ttl)
        cls.__schema__ = schema
        (default_registry if registry is None else registry).register(schema, cls)
        return cls
    return _decorate
