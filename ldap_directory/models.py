"""
Value objects returned by the directory client.

Records and profiles are plain immutable dataclasses. Profiles are assembled
through UserProfileBuilder while attributes are still being fetched and only
the finished, frozen UserProfile is handed back to callers.
"""

import functools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlsplit

from ldap3 import SUBTREE

from ldap_directory.utils import split_street_address

DEFAULT_PORTS = {'ldap': 389, 'ldaps': 636}


@dataclass(frozen=True)
class DirectoryEndpoint:
    """Where the directory lives and which credentials to bind with."""

    path: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    @property
    def scheme(self) -> str:
        return urlsplit(self.path).scheme.lower()

    @property
    def use_ssl(self) -> bool:
        return self.scheme == 'ldaps'

    @property
    def host(self) -> str:
        return urlsplit(self.path).hostname or ''

    @property
    def port(self) -> int:
        port = urlsplit(self.path).port
        return port or DEFAULT_PORTS.get(self.scheme, 389)

    @property
    def base_dn(self) -> str:
        """Search root taken from the path component of the URL, if any."""
        return unquote(urlsplit(self.path).path.lstrip('/'))

    @property
    def has_credentials(self) -> bool:
        return bool(self.username)


@dataclass(frozen=True)
class SearchQuery:
    """A filter, the attributes to load for each match and the search scope."""

    search_filter: str
    attributes: Tuple[str, ...] = ()
    scope: str = SUBTREE

    @classmethod
    def build(cls, search_filter: str, attributes: Optional[Iterable[str]] = None,
              scope: str = SUBTREE) -> 'SearchQuery':
        return cls(search_filter, tuple(attributes or ()), scope)


@dataclass(frozen=True)
class SearchRecord:
    """One entry returned by a search: its DN and the attributes that were loaded."""

    dn: str
    attributes: Dict[str, List[str]] = field(default_factory=dict)

    def values(self, name: str) -> List[str]:
        """All values of an attribute; attribute names are case-insensitive."""
        wanted = name.lower()
        for key, values in self.attributes.items():
            if key.lower() == wanted:
                return list(values)
        return []

    def first(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.values(name)
        return values[0] if values else default


@dataclass(frozen=True)
class MailingAddress:
    street_line1: str = ''
    street_line2: str = ''
    po_box: str = ''
    city: str = ''
    state: str = ''
    postal_code: str = ''
    country: str = ''

    @classmethod
    def from_attributes(cls, street: Optional[str] = '', po_box: Optional[str] = '',
                        city: Optional[str] = '', state: Optional[str] = '',
                        postal_code: Optional[str] = '', country: Optional[str] = '') -> 'MailingAddress':
        """Build an address, splitting the street value at its first line break."""
        line1, line2 = split_street_address(street)
        return cls(
            street_line1=line1,
            street_line2=line2,
            po_box=po_box or '',
            city=city or '',
            state=state or '',
            postal_code=postal_code or '',
            country=country or '',
        )


@dataclass(frozen=True)
class UserProfile:
    username: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    password_last_set: Optional[datetime] = None
    mailing_address: Optional[MailingAddress] = None
    groups: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return self.display_name or ''


class UserProfileBuilder:
    """
    Mutable staging area for a UserProfile.

    Attributes are filled in as they are read from the directory; build()
    returns the frozen profile. Group names are de-duplicated on the way in.
    """

    def __init__(self, username: Optional[str] = None, display_name: Optional[str] = None):
        self.username = username
        self.display_name = display_name
        self.email = None
        self.department = None
        self.phone = None
        self.password_last_set = None
        self.mailing_address = None
        self._groups: List[str] = []

    def add_group(self, name: str) -> 'UserProfileBuilder':
        if name not in self._groups:
            self._groups.append(name)
        return self

    def add_groups(self, names: Iterable[str]) -> 'UserProfileBuilder':
        for name in names:
            self.add_group(name)
        return self

    def build(self) -> UserProfile:
        return UserProfile(
            username=self.username,
            display_name=self.display_name,
            email=self.email,
            department=self.department,
            phone=self.phone,
            password_last_set=self.password_last_set,
            mailing_address=self.mailing_address,
            groups=tuple(self._groups),
        )


@dataclass(frozen=True)
class AuthResult:
    """
    Outcome of an authentication attempt.

    result_code 0 means success; 1 means failure, in which case user_object is
    always None and error_message explains why.
    """

    SUCCESS = 0
    FAILURE = 1

    result_code: int = 0
    error_message: str = ''
    full_error_message: str = ''
    source: str = ''
    process: str = ''
    tag: str = ''
    user_object: Optional[UserProfile] = None

    def __post_init__(self):
        if self.result_code not in (self.SUCCESS, self.FAILURE):
            raise ValueError(f"Unknown result code: {self.result_code}")
        if self.result_code != self.SUCCESS and self.user_object is not None:
            raise ValueError("A failed result cannot carry a user object")
        if self.result_code != self.SUCCESS and not self.error_message:
            raise ValueError("A failed result needs an error message")

    @property
    def succeeded(self) -> bool:
        return self.result_code == self.SUCCESS

    @classmethod
    def success(cls, user_object: Optional[UserProfile] = None, tag: str = '') -> 'AuthResult':
        return cls(result_code=cls.SUCCESS, tag=tag, user_object=user_object)

    @classmethod
    def failure(cls, error_message: str, process: str, full_error_message: str = '',
                source: str = '', tag: str = '') -> 'AuthResult':
        return cls(
            result_code=cls.FAILURE,
            error_message=error_message,
            full_error_message=full_error_message,
            source=source,
            process=process,
            tag=tag,
        )


def compare_users(x: Optional[UserProfile], y: Optional[UserProfile]) -> int:
    """
    Order users by display name.

    Missing or blank display names sort before any named user and compare
    equal to each other. Named users compare by ordinal string order.
    """
    x_name = (x.display_name if x is not None else None) or ''
    y_name = (y.display_name if y is not None else None) or ''
    if not x_name:
        return 0 if not y_name else -1
    if not y_name:
        return 1
    return (x_name > y_name) - (x_name < y_name)


def sort_users(users: Sequence[UserProfile]) -> List[UserProfile]:
    return sorted(users, key=functools.cmp_to_key(compare_users))
