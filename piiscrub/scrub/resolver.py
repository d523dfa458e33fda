from typing import Iterable, List, Set

from sqlalchemy import text

from ..db.db import Store


class Resolver:
    """Expands '%' wildcards in meta keys into the keys actually stored."""

    def __init__(self, store: Store):
        self.store = store

    def resolve_wildcard(self, table: str, pattern: str) -> Set[str]:
        # Pattern goes through verbatim, '%' and '_' keep their LIKE meaning.
        query = text(
            f"SELECT DISTINCT meta_key FROM {self.store.table(table)} WHERE meta_key LIKE :pattern"
        ).bindparams(pattern=pattern)
        return {k for k in self.store.fetch_column(query) if k is not None}

    def expand(self, table: str, keys: Iterable[str]) -> List[str]:
        expanded = []
        for key in keys:
            if "%" in key:
                expanded.extend(sorted(self.resolve_wildcard(table, key)))
            else:
                expanded.append(key)
        return list(dict.fromkeys(expanded))
