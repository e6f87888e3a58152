# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""Tests for :mod:`joinery.compiler` module."""

import re

import pytest

from joinery.compiler import build_select, by_id_cache_key, compile_by_id, compile_clauses, compile_criteria, \
    compile_link, criteria_cache_key, link_cache_key, QueryCache
from joinery.exceptions import BadParameterError
from joinery.limits import TraversalPolicy
from joinery.schema import Link, Schema, SchemaRegistry
from tests.models import registry


PERSON_COLUMNS = [
    'Person.person_id', 'Person.first_name', 'Person.last_name', 'Person.company_id',
    'Person_details.person_id', 'Person_details.contact_type', 'Person_details.value',
    'Person_employer.company_id', 'Person_employer.company_name']

PERSON_FROM = (
    'person Person'
    ' LEFT OUTER JOIN contact_detail Person_details ON Person.person_id=Person_details.person_id'
    ' LEFT OUTER JOIN company Person_employer ON Person.company_id=Person_employer.company_id')


def joins(from_clause):
    return re.findall(r'(LEFT OUTER JOIN|INNER JOIN) \w+ (\w+)', from_clause)


class TestCompileClauses(object):

    def test_person(self):
        clauses = compile_clauses(registry, 'Person', TraversalPolicy())
        assert clauses.columns == PERSON_COLUMNS
        assert clauses.from_clause == PERSON_FROM
        assert clauses.where == 'Person.person_id=?'

    def test_by_id_sql(self):
        assert compile_by_id(registry, 'Person', TraversalPolicy()) == \
            'SELECT {} FROM {} WHERE Person.person_id=?'.format(', '.join(PERSON_COLUMNS), PERSON_FROM)

    def test_nested_joins(self):
        clauses = compile_clauses(registry, 'ContactDetail', TraversalPolicy())
        assert clauses.columns == [
            'ContactDetail.person_id', 'ContactDetail.contact_type', 'ContactDetail.value',
            'ContactDetail_person.person_id', 'ContactDetail_person.first_name',
            'ContactDetail_person.last_name', 'ContactDetail_person.company_id',
            'ContactDetail_person_employer.company_id', 'ContactDetail_person_employer.company_name']
        assert clauses.from_clause == (
            'contact_detail ContactDetail'
            ' INNER JOIN person ContactDetail_person'
            ' ON ContactDetail.person_id=ContactDetail_person.person_id'
            ' LEFT OUTER JOIN company ContactDetail_person_employer'
            ' ON ContactDetail_person.company_id=ContactDetail_person_employer.company_id')
        assert clauses.where == '(ContactDetail.person_id=? AND ContactDetail.contact_type=?)'

    def test_limit_overrides(self):
        clauses = compile_clauses(registry, 'Person', TraversalPolicy({'Person_details': False}))
        assert [c for c in clauses.columns if c.startswith('Person_details')] == []
        assert joins(clauses.from_clause) == [('LEFT OUTER JOIN', 'Person_employer')]

        clauses = compile_clauses(registry, 'Company', TraversalPolicy({'Company_employees_details': True}))
        assert joins(clauses.from_clause) == [
            ('LEFT OUTER JOIN', 'Company_employees'),
            ('LEFT OUTER JOIN', 'Company_employees_details')]

    def test_forced_path_omits_root_columns(self):
        policy = TraversalPolicy(forced_path='Person_employer')
        clauses = compile_clauses(registry, 'Person', policy)
        assert clauses.columns == ['Person_employer.company_id', 'Person_employer.company_name']
        assert clauses.from_clause == (
            'person Person LEFT OUTER JOIN company Person_employer'
            ' ON Person.company_id=Person_employer.company_id')
        assert clauses.where == 'Person.person_id=?'

    def test_compile_link(self):
        policy = TraversalPolicy(forced_path='Company_employees')
        assert compile_link(registry, 'Company', policy) == (
            'SELECT Company_employees.person_id, Company_employees.first_name, Company_employees.last_name,'
            ' Company_employees.company_id'
            ' FROM company Company LEFT OUTER JOIN person Company_employees'
            ' ON Company.company_id=Company_employees.company_id'
            ' WHERE Company.company_id=?')

    def test_compile_link_needs_forced_path(self):
        with pytest.raises(BadParameterError):
            compile_link(registry, 'Company', TraversalPolicy())

    def test_compile_criteria(self):
        sql = compile_criteria(
            registry, 'Company', TraversalPolicy(), ['Company.company_name LIKE ?', 'Company.company_id>?'],
            order_by='Company.company_name', group_by='Company.company_id')
        assert sql.endswith(
            ' WHERE Company.company_name LIKE ? AND Company.company_id>?'
            ' GROUP BY Company.company_id ORDER BY Company.company_name')
        assert compile_criteria(registry, 'Company', TraversalPolicy(), []) == (
            'SELECT Company.company_id, Company.company_name, Company_employees.person_id,'
            ' Company_employees.first_name, Company_employees.last_name, Company_employees.company_id'
            ' FROM company Company LEFT OUTER JOIN person Company_employees'
            ' ON Company.company_id=Company_employees.company_id')

    def test_nothing_to_select(self):
        with pytest.raises(BadParameterError):
            build_select([], 'person Person')


@pytest.fixture
def chain():
    """
    A chain of links where the middle one is nullable, to check that outer
    joins propagate to every descendant but not to siblings.
    """
    local = SchemaRegistry()
    local.register(Schema('A', 'a', 'a_id', ['a_id', 'b_id', 'e_id'], links={
        'b': Link('B', 'b_id'),
        'e': Link('E', 'e_id')}))
    local.register(Schema('B', 'b', 'b_id', ['b_id', 'c_id'], links={'c': Link('C', 'c_id', nullable=True)}))
    local.register(Schema('C', 'c', 'c_id', ['c_id', 'd_id'], links={'d': Link('D', 'd_id')}))
    local.register(Schema('D', 'd', 'd_id', ['d_id']))
    local.register(Schema('E', 'e', 'e_id', ['e_id']))
    local.freeze()
    return local


def test_null_tainting(chain):
    clauses = compile_clauses(chain, 'A', TraversalPolicy())
    assert joins(clauses.from_clause) == [
        ('INNER JOIN', 'A_b'),
        ('LEFT OUTER JOIN', 'A_b_c'),
        ('LEFT OUTER JOIN', 'A_b_c_d'),
        ('INNER JOIN', 'A_e')]


def test_join_conditions_follow_their_joins(chain):
    from_clause = compile_clauses(chain, 'A', TraversalPolicy()).from_clause
    assert from_clause == (
        'a A'
        ' INNER JOIN b A_b ON A.b_id=A_b.b_id'
        ' LEFT OUTER JOIN c A_b_c ON A_b.c_id=A_b_c.c_id'
        ' LEFT OUTER JOIN d A_b_c_d ON A_b_c.d_id=A_b_c_d.d_id'
        ' INNER JOIN e A_e ON A.e_id=A_e.e_id')


def test_self_referencing_schema_terminates():
    local = SchemaRegistry()
    local.register(Schema('Node', 'node', 'node_id', ['node_id', 'parent_id'], links={
        'parent': Link('Node', [('parent_id', 'node_id')], nullable=True)}))
    clauses = compile_clauses(local, 'Node', TraversalPolicy())
    assert clauses.columns == ['Node.node_id', 'Node.parent_id']

    clauses = compile_clauses(local, 'Node', TraversalPolicy({'Node_parent': True, 'Node_parent_parent': True}))
    assert len(clauses.columns) == 6

    local.register(Schema('Loop', 'loop', 'loop_id', ['loop_id'], links={
        'again': Link('Loop', 'loop_id', limit=100)}))
    clauses = compile_clauses(local, 'Loop', TraversalPolicy(max_depth=5))
    assert len(clauses.columns) == 6


class TestCacheKeys(object):

    def test_by_id(self):
        assert by_id_cache_key('Person', TraversalPolicy()) == ('Person', 'by_id', ((), 16))

    def test_criteria(self):
        policy = TraversalPolicy()
        assert criteria_cache_key('Person', [], policy) == ('Person', 'criteria', (), None, None, ((), 16))
        assert criteria_cache_key('Person', ['a=?', 'b=?'], policy, 'a', 'b') == \
            ('Person', 'criteria', ('a=?', 'b=?'), 'a', 'b', ((), 16))

    @pytest.mark.parametrize('first,second', [
        ((['Person.person_id=20/2'], None, None), (['Person.person_id=20', '2'], None, None)),
        (([], 'x_G=y', None), ([], 'x', 'y')),
        (([], None, 'a'), ([], 'a', None)),
        ((['a=?/'], None, None), (['a=?'], None, None)),
    ])
    def test_distinct_queries_get_distinct_keys(self, first, second):
        policy = TraversalPolicy()
        keys = [criteria_cache_key('Person', fragments, policy, order_by, group_by)
                for fragments, order_by, group_by in (first, second)]
        assert keys[0] != keys[1]

    def test_overrides_change_the_key(self):
        assert criteria_cache_key('Person', [], TraversalPolicy({'Person_details': False})) != \
            criteria_cache_key('Person', [], TraversalPolicy())
        assert criteria_cache_key('Person', [], TraversalPolicy({'Person_details': True})) != \
            criteria_cache_key('Person', [], TraversalPolicy({'Person_details': 1}))
        assert by_id_cache_key('Person', TraversalPolicy(max_depth=3)) != \
            by_id_cache_key('Person', TraversalPolicy())

    def test_link(self):
        assert link_cache_key('Person', TraversalPolicy(forced_path='Person_employer')) == \
            ('Person', 'link', 'Person_employer', ((), 16))


class TestQueryCache(object):

    def test_compiles_once(self):
        cache = QueryCache()
        calls = []

        def compile_fn():
            calls.append(1)
            return 'SELECT 1'

        assert cache.get_or_compile('key', compile_fn) == 'SELECT 1'
        assert cache.get_or_compile('key', compile_fn) == 'SELECT 1'
        assert len(calls) == 1
        assert 'key' in cache
        assert cache['key'] == 'SELECT 1'
        assert len(cache) == 1

        cache.clear()
        assert 'key' not in cache
