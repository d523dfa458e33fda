# Command-line interface

import logging
import os

import click
from dotenv import load_dotenv

from ..config import (
    DEFAULT_PHONE_PREFIX,
    UrlPolicy,
    build_config,
    check_live_target,
    env_flag,
    load_profile,
)
from ..db.db import Store, init_db, make_engine
from ..db.models import EXTENSION_TABLES
from ..errors import ConfigError, ScrubError
from ..scrub.executor import scrub as run_scrub
from ..scrub.plan import PlanBuilder

load_dotenv()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log every statement as it runs")
def cli(verbose):
    """Scrub PII from a copy of a WordPress database."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
    )


@cli.command()
@click.option("--db-url", envvar="DB_URL", help="SQLAlchemy URL, defaults to DB_URL from .env")
@click.option("--prefix", envvar="DB_TABLE_PREFIX", default="wp_", show_default=True, help="Table prefix")
@click.option("--userfields", default="", help="Comma separated extra usermeta keys, '%' wildcards allowed")
@click.option("--postfields", default="", help="Comma separated extra postmeta keys, '%' wildcards allowed")
@click.option("--customtablefields", default="", help="table:col1,col2;other_table:col3")
@click.option("--protected-domain", envvar="PII_SCRUB_PROTECTED_DOMAIN", help="Users whose email contains this are left alone")
@click.option("--contact-methods", envvar="PII_SCRUB_CONTACT_METHODS", default="", help="Extra contact method usermeta keys")
@click.option("--url-policy", type=click.Choice([p.value for p in UrlPolicy]), help="non_empty (default) keeps empty urls empty, always overwrites them")
@click.option("--profile", type=click.Path(exists=True, dir_okay=False), help="YAML file with per-site scrub settings")
@click.option("--dry-run", is_flag=True, help="Print the statements instead of running them")
@click.option("--yes", is_flag=True, help="Do not prompt for final confirmation")
@click.option("--live", is_flag=True, help="Allow running when the environment is marked as Live. THIS IS DANGEROUS!")
@click.pass_context
def scrub(ctx, db_url, prefix, userfields, postfields, customtablefields, protected_domain,
          contact_methods, url_policy, profile, dry_run, yes, live):
    """
    Scrub PII data from a database, replacing most data with series of 'XXXXX ' strings.
    Users with an email in the protected domain are not touched.

    \b
    Examples:
      piiscrub scrub --userfields=apple_id,telephone --postfields=distribution_email
      piiscrub scrub --userfields=%_name --postfields=memo_category%
      piiscrub scrub --customtablefields=audit_trail:user_email,operation
    """
    if not db_url:
        raise click.UsageError("No database configured. Pass --db-url or set DB_URL in .env")
    try:
        config = build_config(
            userfields=userfields,
            postfields=postfields,
            customtablefields=customtablefields,
            contact_methods=contact_methods,
            profile=load_profile(profile) if profile else None,
            protected_domain=protected_domain,
            url_policy=url_policy,
            dry_run=dry_run,
            environment_is_protected_target=env_flag("LIVE_ENVIRONMENT"),
            allow_protected_target_override=live,
            table_prefix=prefix,
            phone_prefix=os.getenv("PII_SCRUB_PHONE_PREFIX", DEFAULT_PHONE_PREFIX),
        )
    except ConfigError as e:
        raise click.UsageError(str(e))

    try:
        if config.environment_is_protected_target:
            click.secho("Database is currently set as Live.", fg="red", err=True)
        check_live_target(config)

        engine = make_engine(db_url)
        plan = PlanBuilder(Store(engine, prefix=config.table_prefix), config).build()
        for line in plan.summary():
            click.echo(line)
        click.echo("")

        confirmed = yes or dry_run or click.confirm("Are you sure you wish to proceed?", default=False)
        config = config.model_copy(update={"confirmed": confirmed})
        report = run_scrub(engine, config, plan=plan, echo=lambda sql: click.echo(sql + "\n"))
    except ScrubError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        ctx.exit(e.exit_code)

    click.echo("")
    if report.dry_run:
        click.secho(
            f"Dry run complete. {len(report.statements)} statements would have been run, none executed. "
            f"Time taken: {report.elapsed:.2f} secs.",
            fg="green",
        )
    else:
        click.secho(
            f"Success: PII data all scrubbed. Statements run: {report.executed}, time taken: {report.elapsed:.2f} secs.",
            fg="green",
        )


@cli.command("init-db")
@click.option("--db-url", envvar="DB_URL", help="SQLAlchemy URL, defaults to DB_URL from .env")
@click.option("--extension", "extensions", multiple=True, type=click.Choice(sorted(EXTENSION_TABLES)))
def init_db_command(db_url, extensions):
    """Create the reference WordPress tables (for trial copies)."""
    if not db_url:
        raise click.UsageError("No database configured. Pass --db-url or set DB_URL in .env")
    init_db(make_engine(db_url), extensions)
    click.echo(f"Created tables on {db_url}")


if __name__ == "__main__":
    cli()
