"""
Search execution and result projection.

This module runs filtered searches over a bound connection and turns the raw
ldap3 response into SearchRecord objects whose attribute values are plain
strings.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ldap3 import SUBTREE, Connection
from ldap3.core.exceptions import LDAPException

from ldap_directory.errors import DirectoryQueryError
from ldap_directory.models import SearchQuery, SearchRecord
from ldap_directory.names import to_common_name
from ldap_directory.session import DirectorySession, describe_result

logger = logging.getLogger(__name__)

PAGED_RESULTS_CONTROL = '1.2.840.113556.1.4.319'

RESULT_SUCCESS = 0
RESULT_NO_SUCH_OBJECT = 32


class QueryExecutor:
    """
    Runs one search at a time against a connection from a DirectorySession.

    All pages of a paged search are fetched before returning, so callers get
    a complete, ordered list of records.
    """

    def __init__(self, session: DirectorySession, page_size: int = 1000):
        self.session = session
        self.page_size = page_size

    def search(self, connection: Connection, search_filter: str,
               attributes: Optional[Iterable[str]] = None,
               search_base: Optional[str] = None,
               search_scope: str = SUBTREE) -> List[SearchRecord]:
        """
        Run a search and return every matching record.

        Args:
            connection: Bound connection
            search_filter: LDAP filter, must not be empty
            attributes: Attribute names to load; only DNs are returned when empty
            search_base: Search root, defaults to the session's base DN
            search_scope: ldap3 scope constant

        Returns:
            Matching records in the order the server returned them

        Raises:
            DirectoryQueryError: If the filter is empty or the search fails
        """
        return self.execute(connection, SearchQuery.build(search_filter, attributes, search_scope), search_base)

    def execute(self, connection: Connection, query: SearchQuery,
                search_base: Optional[str] = None) -> List[SearchRecord]:
        """Run a prepared query; see search()."""
        search_filter = query.search_filter
        if not search_filter or not search_filter.strip():
            raise DirectoryQueryError("Search filter must not be empty")

        base = search_base or self.session.search_base(connection)
        logger.debug(f"Searching with filter: {search_filter} in base: {base}")

        records = []
        cookie = None
        page_count = 0
        try:
            while True:
                connection.search(
                    search_base=base,
                    search_filter=search_filter,
                    search_scope=query.scope,
                    attributes=list(query.attributes) or None,
                    paged_size=self.page_size,
                    paged_cookie=cookie
                )
                result = connection.result or {}
                # ldap3 reports a search with no entries as unsuccessful, so go by the result code
                if result.get('result', RESULT_SUCCESS) not in (RESULT_SUCCESS, RESULT_NO_SUCH_OBJECT):
                    raise DirectoryQueryError(f"Search failed: {describe_result(result)}")

                page_count += 1
                records.extend(self._project(connection.response))

                cookie = _paging_cookie(result)
                if not cookie:
                    break
        except LDAPException as e:
            raise DirectoryQueryError(f"Search with filter {search_filter} failed: {e}") from e

        logger.debug(f"Retrieved {len(records)} records across {page_count} pages")
        return records

    def search_single(self, connection: Connection, search_filter: str,
                      attributes: Optional[Iterable[str]] = None,
                      search_base: Optional[str] = None,
                      search_scope: str = SUBTREE) -> Optional[SearchRecord]:
        """Return the first matching record, or None when nothing matches."""
        records = self.search(connection, search_filter, attributes, search_base, search_scope)
        return records[0] if records else None

    @staticmethod
    def extract_names(records: Iterable[SearchRecord], attribute_name: str = '') -> List[str]:
        """
        Project records onto short names.

        Without an attribute name each record contributes its own common name.
        With one, every value of that attribute is converted to a common name;
        blank values carry no name and are skipped rather than rejected.
        Order is preserved and duplicates are kept.
        """
        names = []
        for record in records:
            if not attribute_name:
                names.append(to_common_name(record.dn))
                continue
            for value in record.values(attribute_name):
                if not value.strip():
                    logger.debug(f"Skipping blank {attribute_name} value on {record.dn}")
                    continue
                names.append(to_common_name(value))
        return names

    def _project(self, response: Optional[List[Dict[str, Any]]]) -> List[SearchRecord]:
        records = []
        for item in response or []:
            # Skip referrals and other non-entry responses
            if item.get('type') != 'searchResEntry':
                continue
            raw_attributes = item.get('raw_attributes') or {}
            attributes = {
                name: [_to_text(value) for value in values]
                for name, values in raw_attributes.items()
            }
            records.append(SearchRecord(dn=item.get('dn', ''), attributes=attributes))
        return records


def _to_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode('utf-8', errors='replace')
    return str(value)


def _paging_cookie(result: Dict[str, Any]) -> Optional[bytes]:
    controls = result.get('controls') or {}
    control = controls.get(PAGED_RESULTS_CONTROL) or {}
    return (control.get('value') or {}).get('cookie') or None
