import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from ..config import ScrubConfig
from ..db.db import Store, sanitize_identifier
from .resolver import Resolver
from .transforms import new_password

logger = logging.getLogger(__name__)


class OpKind(Enum):
    IDENTITY = "identity"
    META = "meta"
    COMMENT_AUTHOR = "comment_author"
    COLUMNS = "columns"
    PROFILE = "profile"


# Fields WordPress uses "out of the box".
IDENTITY_COLUMNS = ["user_login", "user_nicename", "display_name", "user_email", "user_pass", "user_url"]
IDENTITY_LABEL_COLUMNS = ("user_login", "user_nicename", "display_name")
CORE_USER_META = ["first_name", "last_name", "nickname", "description"]
COMMENT_AUTHOR_COLUMNS = ["comment_author", "comment_author_email", "comment_author_url"]

WOOCOMMERCE_USER_META = [
    "billing_country",
    "billing_first_name",
    "billing_last_name",
    "billing_company",
    "billing_address_1",
    "billing_address_2",
    "billing_city",
    "billing_state",
    "billing_postcode",
    "billing_email",
    "billing_phone",
    "shipping_country",
    "shipping_first_name",
    "shipping_last_name",
    "shipping_company",
    "shipping_address_1",
    "shipping_address_2",
    "shipping_city",
    "shipping_state",
    "shipping_postcode",
]
# Order meta. The PayPal keys really do use capitals and spaces.
WOOCOMMERCE_POST_META = [
    "_customer_ip_address",
    "_customer_user_agent",
    "Payer PayPal address",
    "Payer first name",
    "Payer last name",
] + ["_" + k for k in WOOCOMMERCE_USER_META]

COMMERCE_MARKER = "woocommerce%"
SOCIAL_MARKER = "bp_%"
SOCIAL_PROFILE_TABLE = "bp_xprofile_data"

# Candidates for the "<owner id>" half of an email seed in custom tables.
SEED_ID_COLUMNS = ("ID", "id", "user_id")

KEY_RX = re.compile(r"[^a-z0-9_\-]")


def sanitize_key(key: str) -> str:
    """Lowercase alphanumerics, dashes and underscores only."""
    return KEY_RX.sub("", (key or "").lower())


@dataclass
class ScrubOperation:
    kind: OpKind
    label: str
    description: str
    table: str
    targets: List[str]
    identity_aware: bool = False
    owner_column: Optional[str] = None
    seed_column: Optional[str] = None
    filters: Dict[str, str] = field(default_factory=dict)
    fixed_values: Dict[str, str] = field(default_factory=dict)
    extra_fields: List[str] = field(default_factory=list)


@dataclass
class ScrubPlan:
    operations: List[ScrubOperation]
    extensions: Dict[str, bool] = field(default_factory=dict)

    def __iter__(self):
        return iter(self.operations)

    def __len__(self):
        return len(self.operations)

    def summary(self) -> List[str]:
        lines = ["Summary of data to be scrubbed: "]
        for op in self.operations:
            if op.extra_fields:
                lines.append(f" * {op.description} Including the following extra fields:")
                lines.extend(f" * * {f}" for f in op.extra_fields)
            else:
                lines.append(f" * {op.description}")
        return lines


class PlanBuilder:
    def __init__(self, store: Store, config: ScrubConfig, resolver: Resolver = None, password_hash: str = None):
        self.store = store
        self.config = config
        self.resolver = resolver or Resolver(store)
        self.password_hash = password_hash or new_password()[1]

    def has_extension(self, marker: str) -> bool:
        # Tables survive plugin deactivation, so "was ever installed" counts as installed.
        return bool(self.store.table_names(like=self.store.prefix + marker))

    def build(self) -> ScrubPlan:
        extensions = {
            "woocommerce": self.has_extension(COMMERCE_MARKER),
            "buddypress": self.has_extension(SOCIAL_MARKER),
        }
        ops = [
            self.identity_op(),
            self.usermeta_op(commerce=extensions["woocommerce"]),
            self.comment_author_op(),
        ]
        if self.config.extra_content_fields:
            op = self.postmeta_op()
            if op:
                ops.append(op)
        for custom in self.config.custom_tables:
            op = self.custom_table_op(custom.table, custom.columns)
            if op:
                ops.append(op)
        if extensions["woocommerce"]:
            ops.extend(self.commerce_ops())
        if extensions["buddypress"]:
            op = self.social_profile_op()
            if op:
                ops.append(op)
        logger.debug("Built plan with %d operations (extensions: %s)", len(ops), extensions)
        return ScrubPlan(operations=ops, extensions=extensions)

    def identity_op(self) -> ScrubOperation:
        users = self.store.table("users")
        return ScrubOperation(
            kind=OpKind.IDENTITY,
            label="Users data",
            description=f"Users data in {users}.",
            table=users,
            targets=list(IDENTITY_COLUMNS),
            identity_aware=True,
            seed_column="ID",
            fixed_values={"user_pass": self.password_hash},
        )

    def usermeta_op(self, commerce: bool = False) -> ScrubOperation:
        usermeta = self.store.table("usermeta")
        extra = self.resolver.expand("usermeta", self.config.extra_user_fields)
        keys = CORE_USER_META + list(self.config.contact_methods) + extra
        if commerce:
            keys += WOOCOMMERCE_USER_META
        return ScrubOperation(
            kind=OpKind.META,
            label="Users meta data",
            description=f"Users meta data in {usermeta}.",
            table=usermeta,
            targets=list(dict.fromkeys(k for k in keys if k)),
            identity_aware=True,
            owner_column="user_id",
            extra_fields=extra,
        )

    def comment_author_op(self) -> ScrubOperation:
        comments = self.store.table("comments")
        return ScrubOperation(
            kind=OpKind.COMMENT_AUTHOR,
            label="Commenters data",
            description=f"Commenters data in {comments}.",
            table=comments,
            targets=list(COMMENT_AUTHOR_COLUMNS),
            identity_aware=True,
            owner_column="user_id",
        )

    def postmeta_op(self) -> Optional[ScrubOperation]:
        postmeta = self.store.table("postmeta")
        keys = self.resolver.expand("postmeta", self.config.extra_content_fields)
        keys = list(dict.fromkeys(k for k in map(sanitize_key, keys) if k))
        if not keys:
            logger.warning("No usable postmeta keys left after sanitizing %s", self.config.extra_content_fields)
            return None
        return ScrubOperation(
            kind=OpKind.META,
            label="Customised Postmeta data",
            description=f"Custom meta data within {postmeta}.",
            table=postmeta,
            targets=keys,
            owner_column="post_id",
            extra_fields=keys,
        )

    def custom_table_op(self, name: str, columns: List[str]) -> Optional[ScrubOperation]:
        table = self.store.table(name)
        if not self.store.has_table(table):
            logger.warning("Skipping custom table %s: it does not exist", table)
            return None
        existing = {c.lower(): c for c in self.store.columns(table)}
        targets = []
        for column in columns:
            column = sanitize_identifier(column)
            if not column:
                continue
            if column.lower() not in existing:
                logger.warning("Skipping %s.%s: no such column", table, column)
                continue
            targets.append(existing[column.lower()])
        if not targets:
            logger.warning("Skipping custom table %s: none of its columns exist", table)
            return None
        seed_column = next((existing[c.lower()] for c in SEED_ID_COLUMNS if c.lower() in existing), None)
        targets = list(dict.fromkeys(targets))
        return ScrubOperation(
            kind=OpKind.COLUMNS,
            label=f"Customised Table data ({table})",
            description=f"Custom table {table}.",
            table=table,
            targets=targets,
            seed_column=seed_column,
            extra_fields=[f"{table} - {','.join(targets)}"],
        )

    def commerce_ops(self) -> List[ScrubOperation]:
        postmeta = self.store.table("postmeta")
        posts = self.store.table("posts")
        return [
            ScrubOperation(
                kind=OpKind.META,
                label="WooCommerce data",
                description=f"WooCommerce data within {self.store.table('usermeta')} and {postmeta} (i.e. orders).",
                table=postmeta,
                targets=list(WOOCOMMERCE_POST_META),
                owner_column="post_id",
            ),
            ScrubOperation(
                kind=OpKind.COLUMNS,
                label="WooCommerce order notes",
                description=f"Customer order notes within {posts}.",
                table=posts,
                targets=["post_excerpt"],
                seed_column="ID",
                filters={"post_type": "shop_order"},
            ),
        ]

    def social_profile_op(self) -> Optional[ScrubOperation]:
        table = self.store.table(SOCIAL_PROFILE_TABLE)
        if not self.store.has_table(table):
            logger.warning("BuddyPress tables found but %s is missing, skipping profile data", table)
            return None
        return ScrubOperation(
            kind=OpKind.PROFILE,
            label="BuddyPress data",
            description=f"BuddyPress data within {table}.",
            table=table,
            targets=["value"],
            identity_aware=True,
            owner_column="user_id",
        )
