"""
SQL expressions that mask a column in place.

Every literal that goes into a statement (mask token, placeholder url, phone
prefix, protected-domain pattern, password hash) is a bound parameter; only
sanitized identifiers are written into the SQL text itself.
"""
import hashlib
import re
import secrets
from typing import Optional

from ..config import DEFAULT_PHONE_PREFIX, UrlPolicy
from .classify import Category

MASK_TOKEN = "XXXXX "
PLACEHOLDER_URL = "http://www.example.org/"
IDENTITY_LABEL = "user-"
PHONE_DIGITS = 6
# Written into the SQL as ESCAPE '!', a literal MySQL and SQLite read the same way.
LIKE_ESCAPE = "!"


class Binds(dict):
    """Bound parameters collected while rendering one statement."""

    def bind(self, name: str, value) -> str:
        self[name] = value
        return f":{name}"


def new_password() -> tuple:
    """A random password and its hash, generated once per run.

    The hash is the legacy 32 char md5 format, which WordPress still accepts
    and rehashes on the next successful login.
    """
    password = secrets.token_urlsafe(18)
    return password, hashlib.md5(password.encode("utf-8")).hexdigest()


class TransformLibrary:
    def __init__(
        self,
        protected_domain: Optional[str] = None,
        url_policy: UrlPolicy = UrlPolicy.NON_EMPTY,
        phone_prefix: str = DEFAULT_PHONE_PREFIX,
    ):
        self.protected_domain = (protected_domain or "").strip() or None
        self.url_policy = UrlPolicy(url_policy)
        self.phone_prefix = phone_prefix

    @property
    def protected_pattern(self) -> Optional[str]:
        """LIKE pattern for "contains the protected domain", with '%' and '_' taken literally."""
        if not self.protected_domain:
            return None
        return f"%{escape_like(self.protected_domain)}%"

    def _protected_like(self, column: str, binds: Binds, negate: bool = False) -> str:
        op = "NOT LIKE" if negate else "LIKE"
        return f"{column} {op} {binds.bind('protected', self.protected_pattern)} ESCAPE '{LIKE_ESCAPE}'"

    def expression(self, category: Category, column: str, binds: Binds, seed: str = None, guard: bool = True) -> str:
        if category is Category.EMAIL:
            return self.email(column, binds, seed)
        if category is Category.URL:
            return self.url(column, binds)
        if category is Category.PHONE:
            return self.phone(column, binds, guard=guard)
        return self.mask(column, binds)

    def email(self, column: str, binds: Binds, seed: str) -> str:
        # Swap the local part for the seed, keep "@domain" as it was.
        local_length = f"CHAR_LENGTH( SUBSTRING_INDEX( {column}, '@', 1 ) )"
        replaced = f"CONCAT( {seed}, SUBSTR( {column}, {local_length} + 1 ) )"
        if not self.protected_pattern:
            return replaced
        return f"CASE WHEN {self._protected_like(column, binds)} THEN {column} ELSE {replaced} END"

    def url(self, column: str, binds: Binds) -> str:
        placeholder = binds.bind("placeholder_url", PLACEHOLDER_URL)
        if self.url_policy is UrlPolicy.ALWAYS:
            return placeholder
        return f"CASE WHEN {column} <> '' THEN {placeholder} ELSE {column} END"

    def phone(self, column: str, binds: Binds, guard: bool = True) -> str:
        # RAND() is evaluated per row, so every row gets its own number.
        fake = f"CONCAT( {binds.bind('phone_prefix', self.phone_prefix)}, {random_digits()} )"
        if not guard:
            return fake
        return f"CASE WHEN {column} <> '' THEN {fake} ELSE {column} END"

    def mask(self, column: str, binds: Binds) -> str:
        token = binds.bind("mask_token", MASK_TOKEN)
        return f"REPEAT( {token}, FLOOR( CHAR_LENGTH( {column} ) / {len(MASK_TOKEN)} ) )"

    def identity(self, id_column: str, binds: Binds) -> str:
        return f"CONCAT( {binds.bind('identity_label', IDENTITY_LABEL)}, {id_column} )"

    def owner_seed(self, key_sql: str, owner_column: str) -> str:
        """Email local part: '<key>-<owner id>'."""
        return f"CONCAT( {key_sql}, '-', {owner_column} )"

    def not_protected_email(self, email_column: str, binds: Binds) -> Optional[str]:
        if not self.protected_pattern:
            return None
        return self._protected_like(email_column, binds, negate=True)

    def not_protected_owner(self, owner_column: str, users_table: str, binds: Binds) -> Optional[str]:
        if not self.protected_pattern:
            return None
        return f"{owner_column} NOT IN ( SELECT ID FROM {users_table} WHERE {self._protected_like('user_email', binds)} )"


def escape_like(value: str) -> str:
    """'@acme_corp' -> '@acme!_corp', so LIKE matches the text itself."""
    return re.sub(r"([!%_])", r"!\1", value)


def random_digits(count: int = PHONE_DIGITS) -> str:
    return f"LPAD( FLOOR( RAND() * {10 ** count} ), {count}, '0' )"
