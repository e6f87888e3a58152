# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""Tests for :mod:`joinery.materializer` module."""

import itertools

import pytest
from sqlalchemy.dialects import sqlite
from sqlalchemy.types import Boolean

from joinery import entity, Entity, Link, SchemaRegistry
from joinery.compiler import compile_clauses
from joinery.exceptions import ModelIncompatibilityError
from joinery.limits import TraversalPolicy
from joinery.materializer import Materializer, RowCursor
from tests.models import Company, ContactDetail, Person, registry


NO_EMPLOYER = {'Person_employer': False}


def materialize(entity_type, rows, limit_overrides=None):
    policy = TraversalPolicy(limit_overrides, root=entity_type)
    return Materializer(registry, policy).materialize(entity_type, rows)


class TestRowCursor(object):

    def test_take(self):
        cursor = RowCursor([1, 2, 3])
        assert cursor.take(2) == (1, 2)
        assert cursor.position == 2
        assert not cursor.at_end
        assert cursor.take(1) == (3,)
        assert cursor.at_end

    def test_take_past_the_end(self):
        cursor = RowCursor([1, 2])
        with pytest.raises(ModelIncompatibilityError):
            cursor.take(3)


class TestOneToMany(object):
    rows = [
        (9, 'Tom', 'Gidden', 1, 9, 'Email', 'tom@example.net'),
        (9, 'Tom', 'Gidden', 1, 9, 'Tel', '07976 123 456')]

    def test_duplicate_parent_rows(self):
        results = materialize('Person', self.rows, NO_EMPLOYER)
        assert list(results.keys()) == [9]
        person = results[9]
        assert isinstance(person, Person)
        assert person.first_name == 'Tom'
        assert list(person.details.keys()) == [(9, 'Email'), (9, 'Tel')]
        assert person.details[(9, 'Tel')].value == '07976 123 456'
        assert isinstance(person.details[(9, 'Email')], ContactDetail)

    def test_repeated_rows_are_idempotent(self):
        results = materialize('Person', self.rows + self.rows + self.rows[:1], NO_EMPLOYER)
        assert len(results) == 1
        assert list(results[9].details.keys()) == [(9, 'Email'), (9, 'Tel')]

    @pytest.mark.parametrize('rows', list(itertools.permutations(rows + [
        (10, 'Steve', 'Jones', 1, 10, 'Email', 'steve@example.com')])))
    def test_arrival_order(self, rows):
        results = materialize('Person', rows, NO_EMPLOYER)
        assert set(results.keys()) == {9, 10}
        assert set(results[9].details.keys()) == {(9, 'Email'), (9, 'Tel')}
        assert set(results[10].details.keys()) == {(10, 'Email')}

    def test_no_children(self):
        results = materialize('Person', [(12, 'Ann', 'Nobody', None, None, None, None)], NO_EMPLOYER)
        person = results[12]
        assert person.is_loaded('details')
        assert list(person.details.keys()) == []


class TestOneToOne(object):

    def test_null_foreign_key_skips_the_subtree(self):
        person = materialize('Person', [(12, 'Ann', 'Nobody', None, None, None, None, None, None)])[12]
        assert person.is_loaded('employer')
        assert person.employer is None
        assert person.to_dict() == {
            'person_id': 12, 'first_name': 'Ann', 'last_name': 'Nobody', 'company_id': None,
            'details': [], 'employer': None}

    def test_null_foreign_key_allocates_nothing(self, monkeypatch):
        allocated = []
        original = Company._blank.__func__

        def _blank(cls, session=None):
            allocated.append(cls)
            return original(cls, session)

        monkeypatch.setattr(Company, '_blank', classmethod(_blank))
        materialize('Person', [(12, 'Ann', 'Nobody', None, None, None, None, None, None)])
        assert allocated == []

    def test_attach(self):
        rows = [
            (9, 'Tom', 'Gidden', 1, 9, 'Email', 'tom@example.net', 1, 'Foo.com Limited'),
            (9, 'Tom', 'Gidden', 1, 9, 'Tel', '07976 123 456', 1, 'Foo.com Limited')]
        person = materialize('Person', rows)[9]
        assert isinstance(person.employer, Company)
        assert person.employer.name == 'Foo.com Limited'
        assert len(person.details) == 2

    def test_disagreeing_keys(self):
        rows = [
            (9, 'Tom', 'Gidden', 1, 9, 'Email', 'tom@example.net', 1, 'Foo.com Limited'),
            (9, 'Tom', 'Gidden', 1, 9, 'Tel', '07976 123 456', 2, 'Bar.com Limited')]
        with pytest.raises(ModelIncompatibilityError):
            materialize('Person', rows)

    def test_nullable_no_match(self):
        person = materialize('Person', [(9, 'Tom', 'Gidden', 3, None, None, None, None, None)])[9]
        assert person.employer is None
        assert person.company_id == 3

    def test_non_nullable_no_match(self):
        row = (9, 'Email', 'tom@example.net', None, None, None, None, None, None)
        with pytest.raises(ModelIncompatibilityError):
            materialize('ContactDetail', [row])

    def test_nested(self):
        row = (9, 'Email', 'tom@example.net', 9, 'Tom', 'Gidden', 1, 1, 'Foo.com Limited')
        detail = materialize('ContactDetail', [row])[(9, 'Email')]
        assert detail.type == 'Email'
        assert detail.person.full_name == 'Tom Gidden'
        assert detail.person.employer.name == 'Foo.com Limited'
        assert not detail.person.is_loaded('details')


class TestRowShape(object):

    def test_short_row(self):
        with pytest.raises(ModelIncompatibilityError):
            materialize('Person', [(9, 'Tom', 'Gidden', 1, 9, 'Email')], NO_EMPLOYER)

    def test_long_row(self):
        with pytest.raises(ModelIncompatibilityError):
            materialize('Person', [(9, 'Tom', 'Gidden', 1, 9, 'Email', 'tom@example.net', 'extra')], NO_EMPLOYER)

    def test_null_root_key(self):
        with pytest.raises(ModelIncompatibilityError):
            materialize('Person', [(None, 'Tom', 'Gidden', 1, 9, 'Email', 'tom@example.net')], NO_EMPLOYER)

    def test_no_rows(self):
        assert materialize('Person', []) == {}


@pytest.mark.parametrize('entity_type,limit_overrides', [
    ('Person', None),
    ('Person', NO_EMPLOYER),
    ('Person', {'Person_details_person': True}),
    ('Company', None),
    ('Company', {'Company_employees_details': True, 'Company_employees_employer': True}),
    ('ContactDetail', None),
    ('ContactDetail', {'ContactDetail_person_details': 2}),
])
def test_cursor_parity(entity_type, limit_overrides):
    policy = TraversalPolicy(limit_overrides, root=entity_type)
    columns = compile_clauses(registry, entity_type, policy).columns
    materializer = Materializer(registry, policy)

    cursor = RowCursor([1] * len(columns))
    materializer.skip_subtree(registry.resolve(entity_type), cursor, 0, entity_type)
    assert cursor.at_end

    results = materializer.materialize(entity_type, [[1] * len(columns)])
    assert len(results) == 1


def test_materialize_into():
    person = materialize('Person', [(9, 'Tom', 'Gidden', 1, 9, 'Email', 'tom@example.net')], NO_EMPLOYER)[9]
    assert not person.is_loaded('employer')
    policy = TraversalPolicy(forced_path='employer', root='Person')
    Materializer(registry, policy).materialize_into(person, [(1, 'Foo.com Limited')])
    assert person.employer.name == 'Foo.com Limited'
    assert list(person.details.keys()) == [(9, 'Email')]


def test_post_select_runs_once_per_node():
    Person.selected = 0
    rows = [
        (9, 'Tom', 'Gidden', 1, 9, 'Email', 'tom@example.net'),
        (9, 'Tom', 'Gidden', 1, 9, 'Tel', '07976 123 456'),
        (10, 'Steve', 'Jones', 1, 10, 'Email', 'steve@example.com')]
    materialize('Person', rows, NO_EMPLOYER)
    assert Person.selected == 2


def test_column_types():
    local = SchemaRegistry()

    @entity(registry=local, key='flag_id', columns=['flag_id', 'enabled'], column_types={'enabled': Boolean()})
    class Flag(Entity):
        pass

    results = Materializer(local, TraversalPolicy(), dialect=sqlite.dialect()).materialize('Flag', [(1, 1), (2, 0)])
    assert results[1].enabled is True
    assert results[2].enabled is False


def test_self_referencing_tree():
    local = SchemaRegistry()

    @entity(registry=local, key='node_id', columns=['node_id', 'parent_id', 'name'], links={
        'parent': Link('Node', [('parent_id', 'node_id')], nullable=True, limit=2)})
    class Node(Entity):
        pass

    policy = TraversalPolicy()
    assert len(compile_clauses(local, 'Node', policy).columns) == 9
    rows = [(3, 2, 'leaf', 2, 1, 'branch', 1, None, 'root')]
    leaf = Materializer(local, policy).materialize('Node', rows)[3]
    assert leaf.parent.name == 'branch'
    assert leaf.parent.parent.name == 'root'
    assert not leaf.parent.parent.is_loaded('parent')
