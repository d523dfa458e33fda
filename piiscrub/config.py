import os
from enum import Enum
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError, GuardRejected

TRUTHY = {"1", "true", "yes", "on"}
DEFAULT_PHONE_PREFIX = "+44 7700 9"


class UrlPolicy(str, Enum):
    NON_EMPTY = "non_empty"   # empty urls stay empty
    ALWAYS = "always"         # overwrite regardless


class CustomTable(BaseModel):
    table: str
    columns: List[str] = Field(default_factory=list)


class ScrubConfig(BaseModel):
    extra_user_fields: List[str] = Field(default_factory=list)
    extra_content_fields: List[str] = Field(default_factory=list)
    custom_tables: List[CustomTable] = Field(default_factory=list)
    dry_run: bool = False
    confirmed: bool = False
    protected_domain: Optional[str] = None
    environment_is_protected_target: bool = False
    allow_protected_target_override: bool = False
    table_prefix: str = "wp_"
    url_policy: UrlPolicy = UrlPolicy.NON_EMPTY
    contact_methods: List[str] = Field(default_factory=list)
    phone_prefix: str = DEFAULT_PHONE_PREFIX


def parse_field_list(value: Optional[str]) -> List[str]:
    """'a, b,,c' -> ['a', 'b', 'c']"""
    if not value:
        return []
    return [f.strip() for f in value.split(",") if f.strip()]


def parse_custom_tables(value: Optional[str]) -> List[CustomTable]:
    """
    Parse 'audit_trail:user_email,operation;other:col' into CustomTable entries.
    Empty segments are ignored, a segment with no colon is an error.
    """
    tables = []
    if not value:
        return tables
    for segment in value.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        if ":" not in segment:
            raise ConfigError(f"Custom table spec '{segment}' is missing the ':' between table and columns")
        name, columns = segment.split(":", 1)
        name = name.strip()
        if not name:
            raise ConfigError(f"Custom table spec '{segment}' has no table name")
        tables.append(CustomTable(table=name, columns=parse_field_list(columns)))
    return tables


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY


def check_live_target(config: ScrubConfig) -> None:
    if config.environment_is_protected_target and not config.allow_protected_target_override:
        raise GuardRejected("Database is currently set as Live. Re-run with '--live' if you really wish to continue.")


def check_guards(config: ScrubConfig) -> None:
    check_live_target(config)
    if not config.confirmed:
        raise GuardRejected("Scrub not confirmed.")


class ScrubProfile(BaseModel):
    """Per-site settings kept in a YAML file, merged with the command line."""
    model_config = ConfigDict(extra="forbid")

    protected_domain: Optional[str] = None
    userfields: List[str] = Field(default_factory=list)
    postfields: List[str] = Field(default_factory=list)
    customtables: Dict[str, List[str]] = Field(default_factory=dict)
    contact_methods: List[str] = Field(default_factory=list)
    url_policy: Optional[UrlPolicy] = None

    def custom_table_list(self) -> List[CustomTable]:
        return [CustomTable(table=t, columns=cols) for t, cols in self.customtables.items()]


def load_profile(path: str) -> ScrubProfile:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read profile {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Profile {path} must be a mapping of settings")
    try:
        return ScrubProfile(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid profile {path}: {e}") from e


def _merged(*lists: List[str]) -> List[str]:
    return list(dict.fromkeys(item for items in lists for item in items))


def build_config(userfields: str = "", postfields: str = "", customtablefields: str = "",
                 contact_methods: str = "", profile: ScrubProfile = None, **settings) -> ScrubConfig:
    """Command line values on top of an optional profile. Lists are combined, scalars from the command line win."""
    profile = profile or ScrubProfile()
    url_policy = settings.pop("url_policy", None) or profile.url_policy or UrlPolicy.NON_EMPTY
    protected_domain = settings.pop("protected_domain", None) or profile.protected_domain
    return ScrubConfig(
        extra_user_fields=_merged(profile.userfields, parse_field_list(userfields)),
        extra_content_fields=_merged(profile.postfields, parse_field_list(postfields)),
        custom_tables=profile.custom_table_list() + parse_custom_tables(customtablefields),
        contact_methods=_merged(profile.contact_methods, parse_field_list(contact_methods)),
        protected_domain=protected_domain,
        url_policy=UrlPolicy(url_policy),
        **settings,
    )
