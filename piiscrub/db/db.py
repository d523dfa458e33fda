import math
import random
import re
import logging
from contextlib import contextmanager
from typing import Iterable, List, Optional, Set

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .models import Base, CORE_TABLES, EXTENSION_TABLES
from ..errors import StoreError

logger = logging.getLogger(__name__)

IDENTIFIER_RX = re.compile(r"[^A-Za-z0-9_$]")


def sanitize_identifier(name: str) -> str:
    """Strip backticks and anything else that can't appear in a bare table/column name."""
    return IDENTIFIER_RX.sub("", (name or "").replace("`", "").strip())


def like_to_regex(pattern: str) -> re.Pattern:
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.I)


# MySQL string functions used by the rendered statements, for SQLite copies.
def _repeat(s, n):
    if s is None or n is None:
        return None
    return s * max(int(n), 0)

def _substring_index(s, delim, count):
    if s is None or delim is None or count is None:
        return None
    count = int(count)
    if count == 0 or not delim:
        return ""
    parts = str(s).split(delim)
    if count > 0:
        return delim.join(parts[:count])
    return delim.join(parts[count:])

def _concat(*args):
    if any(a is None for a in args):
        return None
    return "".join(str(a) for a in args)

def _lpad(s, length, pad):
    if s is None or length is None or pad is None:
        return None
    s, length = str(s), int(length)
    if len(s) >= length:
        return s[:length]
    if not pad:
        return None
    fill = (pad * length)[: length - len(s)]
    return fill + s

def _floor(x):
    if x is None:
        return None
    return math.floor(x)

def _char_length(s):
    if s is None:
        return None
    return len(str(s))


def install_sqlite_functions(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _register(dbapi_connection, connection_record):
        dbapi_connection.create_function("REPEAT", 2, _repeat)
        dbapi_connection.create_function("SUBSTRING_INDEX", 3, _substring_index)
        dbapi_connection.create_function("CONCAT", -1, _concat)
        dbapi_connection.create_function("LPAD", 3, _lpad)
        dbapi_connection.create_function("FLOOR", 1, _floor)
        dbapi_connection.create_function("CHAR_LENGTH", 1, _char_length)
        dbapi_connection.create_function("RAND", 0, random.random)


def make_engine(db_url: str, **kwargs) -> Engine:
    engine = create_engine(db_url, future=True, **kwargs)
    if engine.dialect.name == "sqlite":
        install_sqlite_functions(engine)
    return engine


def init_db(engine: Engine, extensions: Iterable[str] = ()) -> None:
    """Create the reference WordPress tables, plus any named plugin tables."""
    models = list(CORE_TABLES)
    for name in extensions:
        models.extend(EXTENSION_TABLES[name])
    Base.metadata.create_all(bind=engine, tables=[m.__table__ for m in models])


@contextmanager
def store_errors():
    """Re-raise database errors as StoreError, keeping the driver's message."""
    try:
        yield
    except SQLAlchemyError as e:
        raise StoreError(str(getattr(e, "orig", None) or e)) from e


class Store:
    """The SQL database being scrubbed. One instance per run."""

    def __init__(self, engine: Engine, prefix: str = "wp_"):
        self.engine = engine
        self.prefix = sanitize_identifier(prefix)

    def table(self, name: str) -> str:
        """Full table name for a prefix-relative one."""
        name = sanitize_identifier(name)
        if self.prefix and name.startswith(self.prefix):
            name = name[len(self.prefix):]
        return f"{self.prefix}{name}"

    def execute(self, clause) -> int:
        with store_errors(), self.engine.begin() as conn:
            return conn.execute(clause).rowcount

    def fetch_column(self, clause) -> List:
        with store_errors(), self.engine.connect() as conn:
            return list(conn.execute(clause).scalars())

    # inspect() connects straight away, so it goes inside store_errors() too
    def table_names(self, like: Optional[str] = None) -> List[str]:
        with store_errors():
            names = inspect(self.engine).get_table_names()
        if like is None:
            return names
        rx = like_to_regex(like)
        return [n for n in names if rx.match(n)]

    def has_table(self, name: str) -> bool:
        with store_errors():
            return inspect(self.engine).has_table(name)

    def columns(self, name: str) -> Set[str]:
        with store_errors():
            return {c["name"] for c in inspect(self.engine).get_columns(name)}
