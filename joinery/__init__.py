# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""Maps schema graphs to multi-join SQL queries and back to object trees."""

from types import MethodType

from pockets.autolog import log

from joinery._version import __version__  # noqa: F401
from joinery.compiler import QueryCache
from joinery.crud.api import Session
from joinery.handle import DatabaseHandle
from joinery.limits import DEFAULT_MAX_DEPTH
from joinery.schema import default_registry

from joinery.crud import *  # noqa: F401,F403
from joinery.entity import *  # noqa: F401,F403
from joinery.exceptions import *  # noqa: F401,F403
from joinery.limits import *  # noqa: F401,F403
from joinery.schema import *  # noqa: F401,F403
from joinery.types import *  # noqa: F401,F403


class _SessionInitializer(type):

    def __new__(cls, name, bases, attrs):
        SessionClass = type.__new__(cls, name, bases, attrs)
        if getattr(SessionClass, 'engine', None) is not None:
            if 'query_cache' not in attrs:
                SessionClass.query_cache = QueryCache()
            SessionClass.initialize_registry()
        return SessionClass


class SessionManager(metaclass=_SessionInitializer):
    """
    Opens a `Session` on a connection from `engine`.

    Configuration lives in class attributes of a subclass::

        class Session(SessionManager):
            engine = sqlalchemy.create_engine('sqlite:///people.db')
            registry = my_registry      # defaults to default_registry
            max_depth = 8               # traversal ceiling
            cache = my_object_cache     # optional, used by get_by_id

            class SessionMixin:
                def people_named(self, last_name):
                    return self.get_by_criteria('Person', {'Person.last_name=?': last_name})

        with Session() as session:
            session.people_named('Gidden')

    The session commits when the block exits cleanly, rolls back when it
    raises, and closes its connection either way.
    """
    engine = None
    registry = default_registry
    max_depth = DEFAULT_MAX_DEPTH
    cache = None
    freeze_registry = False

    class SessionMixin(object):
        pass

    def __init__(self):
        self.handle = DatabaseHandle(self.engine.connect())
        self.session = Session(self.handle, self.registry, self.max_depth, self.cache, self.query_cache)
        for name, val in self.SessionMixin.__dict__.items():
            if not name.startswith('__'):
                assert not hasattr(self.session, name) and hasattr(val, '__call__')
                setattr(self.session, name, MethodType(val, self.session))

    def __enter__(self):
        return self.session

    def __exit__(self, exc_type, exc_value, traceback):
        try:
            if exc_type is None:
                self.handle.commit()
            else:
                self.handle.rollback()
        finally:
            self.handle.close()

    def __del__(self):
        handle = self.__dict__.get('handle')
        if handle is not None and not handle.closed:
            log.error('SessionManager went out of scope without underlying connection being closed; '
                      'did you forget to use it as a context manager?')
            handle.close()

    @classmethod
    def initialize_registry(cls):
        cls.registry.validate()
        if cls.freeze_registry and not cls.registry.frozen:
            cls.registry.freeze()
