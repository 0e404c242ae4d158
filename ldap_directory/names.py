"""
Distinguished name helpers.

Directory data is untrusted, so conversion is best-effort: anything that is
not an empty string yields some name rather than an exception.
"""

from ldap_directory.errors import FormatError

COMMON_NAME_PREFIX = 'cn='

_DN_ESCAPES = {',': ',', '+': '+', '=': '=', '"': '"', '\\': '\\', '<': '<', '>': '>', ';': ';', '#': '#'}


def _first_component(dn: str) -> str:
    """Return the first RDN of a DN, honouring backslash-escaped commas."""
    chars = []
    escaped = False
    for ch in dn:
        if escaped:
            chars.append(_DN_ESCAPES.get(ch, '\\' + ch))
            escaped = False
            continue
        if ch == '\\':
            escaped = True
            continue
        if ch == ',':
            break
        chars.append(ch)
    if escaped:
        chars.append('\\')
    return ''.join(chars).strip()


def to_common_name(distinguished_name: str) -> str:
    """
    Extract the short display name from a distinguished name.

    "CN=Domain Admins,CN=Users,DC=example,DC=com" becomes "Domain Admins".
    A first component without a CN= prefix is returned as-is.

    Raises:
        FormatError: If the input is empty
    """
    if not distinguished_name or not distinguished_name.strip():
        raise FormatError("Cannot extract a common name from an empty distinguished name")

    first = _first_component(distinguished_name.strip())
    if first.lower().startswith(COMMON_NAME_PREFIX):
        return first[len(COMMON_NAME_PREFIX):].strip()
    return first
