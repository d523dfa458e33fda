import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.sql.elements import TextClause

from ..config import ScrubConfig, check_guards
from ..db.db import Store
from .classify import Category, classify, partition
from .plan import IDENTITY_LABEL_COLUMNS, OpKind, PlanBuilder, ScrubOperation, ScrubPlan
from .transforms import Binds, TransformLibrary, random_digits

logger = logging.getLogger(__name__)


class RunState(Enum):
    IDLE = "idle"
    PLAN_BUILT = "plan_built"
    EXECUTING = "executing"
    DRY_RUN_PREVIEW = "dry_run_preview"
    DONE = "done"


@dataclass
class Statement:
    label: str
    clause: TextClause

    @property
    def sql(self) -> str:
        """The statement with its bound values written in as SQL literals."""
        return str(self.clause.compile(compile_kwargs={"literal_binds": True}))


@dataclass
class RunReport:
    statements: List[Statement] = field(default_factory=list)
    executed: int = 0
    rows: int = 0
    elapsed: float = 0.0
    dry_run: bool = False


def _statement(label: str, sql: str, binds: Binds) -> Statement:
    return Statement(label=label, clause=text(sql).bindparams(**binds))


class Executor:
    def __init__(self, store: Store, transforms: TransformLibrary, dry_run: bool = False, echo: Callable[[str], None] = None):
        self.store = store
        self.transforms = transforms
        self.dry_run = dry_run
        self.echo = echo
        self.state = RunState.IDLE
        self._renderers = {
            OpKind.IDENTITY: self.render_columns,
            OpKind.COMMENT_AUTHOR: self.render_columns,
            OpKind.COLUMNS: self.render_columns,
            OpKind.META: self.render_meta,
            OpKind.PROFILE: self.render_profile,
        }

    def render(self, op: ScrubOperation) -> List[Statement]:
        return self._renderers[op.kind](op)

    def _owner_clause(self, op: ScrubOperation, binds: Binds) -> Optional[str]:
        if not op.identity_aware:
            return None
        return self.transforms.not_protected_owner(op.owner_column, self.store.table("users"), binds)

    def _email_seed(self, op: ScrubOperation, column: str, binds: Binds) -> str:
        if op.kind in (OpKind.IDENTITY, OpKind.COMMENT_AUTHOR):
            id_column = op.seed_column if op.kind is OpKind.IDENTITY else op.owner_column
            return self.transforms.identity(id_column, binds)
        label = binds.bind(f"seed_{len(binds)}", f"{column}-")
        if op.seed_column:
            return f"CONCAT( {label}, `{op.seed_column}` )"
        return f"CONCAT( {label}, {random_digits()} )"

    def render_columns(self, op: ScrubOperation) -> List[Statement]:
        binds = Binds()
        quote = op.kind is OpKind.COLUMNS
        sets = []
        for column in op.targets:
            ref = f"`{column}`" if quote else column
            if column in op.fixed_values:
                expr = binds.bind(column, op.fixed_values[column])
            elif op.kind is OpKind.IDENTITY and column in IDENTITY_LABEL_COLUMNS:
                expr = self.transforms.identity(op.seed_column, binds)
            else:
                category = classify(column)
                seed = self._email_seed(op, column, binds) if category is Category.EMAIL else None
                expr = self.transforms.expression(category, ref, binds, seed=seed)
            sets.append(f"\t{ref} = {expr}")

        where = []
        for i, (column, value) in enumerate(op.filters.items()):
            where.append(f"`{column}` = {binds.bind(f'filter_{i}', value)}")
        if op.identity_aware:
            email_column = "user_email" if op.kind is OpKind.IDENTITY else "comment_author_email"
            clause = self.transforms.not_protected_email(email_column, binds)
            if clause:
                where.append(clause)

        sql = f"UPDATE {op.table} SET\n" + ",\n".join(sets)
        if where:
            sql += "\nWHERE " + "\n\tAND ".join(where)
        return [_statement(op.label, sql, binds)]

    def render_meta(self, op: ScrubOperation) -> List[Statement]:
        statements = []
        buckets = partition(op.targets)
        for category in Category:
            keys = buckets.get(category)
            if not keys:
                continue
            binds = Binds()
            seed = self.transforms.owner_seed("meta_key", op.owner_column)
            expr = self.transforms.expression(category, "meta_value", binds, seed=seed, guard=False)
            placeholders = ", ".join(binds.bind(f"key_{i}", k) for i, k in enumerate(keys))
            sql = (
                f"UPDATE {op.table} SET\n"
                f"\tmeta_value = {expr}\n"
                f"WHERE meta_key IN ( {placeholders} ) AND meta_value <> ''"
            )
            owner = self._owner_clause(op, binds)
            if owner:
                sql += f"\n\tAND {owner}"
            statements.append(_statement(f"{op.label} ({category.value})", sql, binds))
        return statements

    def render_profile(self, op: ScrubOperation) -> List[Statement]:
        statements = []
        for column in op.targets:
            binds = Binds()
            sql = (
                f"UPDATE {op.table} SET\n"
                f"\t{column} = {self.transforms.mask(column, binds)}\n"
                f"WHERE {column} <> ''"
            )
            owner = self._owner_clause(op, binds)
            if owner:
                sql += f"\n\tAND {owner}"
            statements.append(_statement(op.label, sql, binds))
        return statements

    def run(self, plan: ScrubPlan) -> RunReport:
        self.state = RunState.PLAN_BUILT
        report = RunReport(dry_run=self.dry_run)
        start = time.perf_counter()
        self.state = RunState.DRY_RUN_PREVIEW if self.dry_run else RunState.EXECUTING

        for op in plan:
            logger.info("Scrubbing %s...", op.label)
            for stmt in self.render(op):
                report.statements.append(stmt)
                if self.dry_run:
                    if self.echo:
                        self.echo(stmt.sql)
                    continue
                logger.debug("Running: %s", stmt.sql)
                rows = self.store.execute(stmt.clause)
                report.executed += 1
                if rows and rows > 0:
                    report.rows += rows

        report.elapsed = time.perf_counter() - start
        self.state = RunState.DONE
        return report


def scrub(
    engine: Engine,
    config: ScrubConfig,
    plan: ScrubPlan = None,
    echo: Callable[[str], None] = None,
    password_hash: str = None,
) -> RunReport:
    """
    Guard, plan and run a whole scrub against one database.

    Pass `plan` when it was already built (and shown) before confirming;
    otherwise one is built here. Tables are named with `config.table_prefix`.
    """
    check_guards(config)
    store = Store(engine, prefix=config.table_prefix)
    if plan is None:
        plan = PlanBuilder(store, config, password_hash=password_hash).build()
    transforms = TransformLibrary(config.protected_domain, config.url_policy, config.phone_prefix)
    return Executor(store, transforms, dry_run=config.dry_run, echo=echo).run(plan)
