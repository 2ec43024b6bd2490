"""
Matching of loosely structured "person" fields against an account name.

ZenTao is inconsistent about how it represents people on a bug. The same
field may be a bare login (``"alice"``), a denormalized user record
(``{"account": "alice", "realname": "Alice"}``), or a list of either for
multi-assignee fields. Candidates are extracted recursively from any of
these shapes and compared after trimming and lowercasing.
"""

from typing import Set

# Record keys that may name a person; anything else in a record is ignored
PERSON_FIELDS = ("account", "realname", "name", "user")


def normalize_account(value) -> str:
    return str(value).strip().lower()


def extract_accounts(value) -> Set[str]:
    """Return every normalized account name reachable from ``value``."""
    # bool is an int subclass but never names a person
    if isinstance(value, bool):
        return set()

    if isinstance(value, (str, int, float)):
        candidate = normalize_account(value)
        return {candidate} if candidate else set()

    if isinstance(value, (list, tuple, set)):
        accounts = set()
        for item in value:
            accounts |= extract_accounts(item)
        return accounts

    if isinstance(value, dict):
        accounts = set()
        for key in PERSON_FIELDS:
            if key in value:
                accounts |= extract_accounts(value[key])
        return accounts

    return set()


def matches(value, account: str) -> bool:
    """True when ``account`` is among the accounts extracted from ``value``."""
    target = normalize_account(account) if account is not None else ""
    if not target:
        return False
    return target in extract_accounts(value)
