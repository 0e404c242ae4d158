"""
Transitive group membership resolution.

Group membership is read live from the directory by following memberOf
values, depth first. Every group is expanded at most once per resolution, so
cyclic group graphs of any length terminate.

Directory common names compare case-insensitively, so groups are tracked by
their casefolded name while results keep the spelling the directory returned
first.
"""

import logging
from typing import List, Optional, Set

from ldap3 import Connection

from ldap_directory.query import QueryExecutor
from ldap_directory.utils import escape_filter_value

logger = logging.getLogger(__name__)

MEMBER_OF = 'memberOf'

USER_FILTER = '(&(objectCategory=person)(sAMAccountName={username}))'
GROUP_FILTER = '(&(objectCategory=group)(cn={group}))'


class MembershipResolver:
    """
    Computes the closure of the memberOf relation for a user or a group.

    Results are ordered by first discovery: a direct group comes before the
    groups it belongs to, and each name appears once.
    """

    def __init__(self, executor: QueryExecutor):
        self.executor = executor

    def direct_groups_of_user(self, connection: Connection, username: str) -> List[str]:
        search_filter = USER_FILTER.format(username=escape_filter_value(username))
        records = self.executor.search(connection, search_filter, [MEMBER_OF])
        return self.executor.extract_names(records, MEMBER_OF)

    def direct_groups_of_group(self, connection: Connection, group_name: str) -> List[str]:
        search_filter = GROUP_FILTER.format(group=escape_filter_value(group_name))
        records = self.executor.search(connection, search_filter, [MEMBER_OF])
        return self.executor.extract_names(records, MEMBER_OF)

    def resolve_for_user(self, connection: Connection, username: str) -> List[str]:
        """
        All groups a user belongs to, directly or through nested groups.

        Args:
            connection: Bound connection
            username: Account name of the user

        Returns:
            Group common names, direct memberships first within each branch
        """
        return self.expand(connection, self.direct_groups_of_user(connection, username))

    def resolve_for_group(self, connection: Connection, group_name: str,
                          visited: Optional[Set[str]] = None) -> List[str]:
        """
        All groups that a group belongs to, directly or transitively.

        The group itself is never part of the result, even if the directory
        lists it as its own member.

        Args:
            connection: Bound connection
            group_name: Common name of the group to expand
            visited: Casefolded names of groups already expanded in the current
                resolution; shared across recursive calls so that no group is
                descended twice

        Returns:
            Ancestor group names in depth-first discovery order
        """
        if visited is None:
            visited = set()
        visited.add(group_name.casefold())

        groups = []
        self._descend(connection, group_name, visited, groups)
        return [name for name in groups if name.casefold() != group_name.casefold()]

    def expand(self, connection: Connection, direct_groups: List[str]) -> List[str]:
        """
        Expand a list of direct group names into their full closure.

        Used both for users looked up by name and for memberOf values that a
        caller already holds from an earlier search.
        """
        visited = set()
        groups = []
        for name in direct_groups:
            self._visit(connection, name, visited, groups)
        logger.debug(f"Resolved {len(groups)} groups from {len(direct_groups)} direct memberships")
        return groups

    def _visit(self, connection: Connection, group_name: str, visited: Set[str], groups: List[str]) -> None:
        key = group_name.casefold()
        if not any(name.casefold() == key for name in groups):
            groups.append(group_name)
        if key in visited:
            return
        visited.add(key)
        self._descend(connection, group_name, visited, groups)

    def _descend(self, connection: Connection, group_name: str, visited: Set[str], groups: List[str]) -> None:
        for parent in self.direct_groups_of_group(connection, group_name):
            if parent.casefold() == group_name.casefold():
                logger.debug(f"Group {group_name} lists itself as a parent, skipping")
                continue
            self._visit(connection, parent, visited, groups)
