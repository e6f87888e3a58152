# -*- coding: utf-8 -*-
# Copyright (c) 2017 the Joinery team, see AUTHORS.
# Licensed under the BSD License, see LICENSE for details.

"""
Traversal limits.

The clause compiler, the row materializer and the skip walker each ask the
same `TraversalPolicy` whether to descend into a link. Because they ask the
same question in the same order, the columns the compiler emits and the
columns the materializer consumes always line up.
"""

from joinery.exceptions import BadParameterError
from joinery.schema import join_path


__all__ = ['DEFAULT_MAX_DEPTH', 'TraversalPolicy']


DEFAULT_MAX_DEPTH = 16


def _limit_allows(value, depth):
    if value is True:
        return True
    elif value is False:
        return False
    elif isinstance(value, int) and value >= 0:
        return depth < value
    raise BadParameterError('Limits must be True, False or a non-negative integer, not {!r}'.format(value))


class TraversalPolicy(object):
    """
    Decides whether a link is traversed at a given path and depth.

    The rules are checked in this order, and the first one that applies
    decides:

    1. Nothing is traversed at or beyond `max_depth`.
    2. An entry for the path in `limit_overrides`.
    3. The forced path. Links on the way to it, and the forced link itself,
       are traversed. Everything else is not.
    4. An entry for the path in the link's own `limits` table.
    5. The link's global `limit`.
    6. A link with a `limits` table that doesn't list the path is not
       traversed.
    7. Otherwise the link is traversed unless its target type already
       appears on the path, which breaks cycles in the schema graph.

    Integer limits are maximum depths: a link is traversed while the depth
    of its parent is below the limit. The root is at depth 0.

    Args:
        limit_overrides (dict): Per query overrides, mapping traversal paths
            to True, False or a maximum depth.
        forced_path (str): The single link path to load, for deferred links.
        max_depth (int): Hard ceiling on the traversal depth.
        root (str): The root entity type. A forced path that doesn't start
            with it is taken to be relative to the root.
    """

    def __init__(self, limit_overrides=None, forced_path=None, max_depth=None, root=None):
        self.limit_overrides = dict(limit_overrides or {})
        for path, value in self.limit_overrides.items():
            _limit_allows(value, 0)
        if forced_path and root and not (forced_path == root or forced_path.startswith(root + '_')):
            forced_path = join_path(root, forced_path)
        self.forced_path = forced_path or None
        self.max_depth = DEFAULT_MAX_DEPTH if max_depth is None else max_depth

    def allows(self, link, link_path, depth, history=()):
        """
        Returns True if `link` should be traversed.

        Args:
            link (Link): The link being considered.
            link_path (str): The traversal path of the link.
            depth (int): The depth of the node that owns the link.
            history (tuple): Entity types on the path from the root to the
                node that owns the link, inclusive.
        """
        if depth >= self.max_depth:
            return False

        if link_path in self.limit_overrides:
            return _limit_allows(self.limit_overrides[link_path], depth)

        if self.forced_path:
            return link_path == self.forced_path or self.forced_path.startswith(link_path + '_')

        if link_path in link.limits:
            return _limit_allows(link.limits[link_path], depth)

        if link.limit is not None:
            return depth < link.limit

        if link.limits:
            return False

        return link.target not in history

    @property
    def cache_key(self):
        """
        A hashable description of the query shape this policy produces.

        Override values are kept by repr, since ``True`` and ``1`` compare
        equal but mean different things.

        >>> TraversalPolicy({'Person_employer': True}, max_depth=4).cache_key
        ((('Person_employer', 'True'),), 4)
        """
        overrides = tuple((path, repr(self.limit_overrides[path])) for path in sorted(self.limit_overrides))
        return overrides, self.max_depth

    def __repr__(self):
        return '<TraversalPolicy forced_path={!r} max_depth={!r} limit_overrides={!r}>'.format(
            self.forced_path, self.max_depth, self.limit_overrides)
