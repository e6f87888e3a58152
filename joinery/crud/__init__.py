# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""
The `crud` module loads and saves entity trees.

LOADING
-------
Every load compiles one SELECT joining the root table to every linked table
the traversal limits allow, and folds the rows back into entity trees::

    with Session() as session:
        person = session.get_by_id(Person, 9)
        people = session.get_by_criteria(Person, {'Person.last_name=?': 'Gidden'})
        person = session.get_one_by_criteria(
            Person, [('Person.person_id BETWEEN ? AND ?', (9, 10)), 'Person.company_id IS NOT NULL'])

Criteria are raw SQL fragments using ``?`` placeholders. Tables are referred
to by traversal path, the root entity type followed by link names, e.g.
``Person_employer.company_name``. Values may be scalars, None, or lists of
scalars, which fill consecutive placeholders.

LIMITS
------
Which links are joined is decided per traversal path. A query may pass
``limit_overrides``, mapping traversal paths to True (always follow), False
(never follow) or an integer maximum depth::

    session.get_by_id(Person, 9)  # uses the limits declared on the links
    session.get_by_criteria(Company, None, limit_overrides={'Company_employees_details': True})

Links left out of a load are loaded on first access.

SAVING
------
``session.save(node)`` writes a new node with REPLACE and a modified node
with UPDATE, and returns which statement it issued, or ``'noop'``.
``session.delete(node)`` deletes by primary key.
"""

from joinery.crud import orm  # noqa: F401
from joinery.crud.api import *  # noqa: F401,F403
from joinery.crud.orm import *  # noqa: F401,F403
