import re

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from conftest import PROTECTED, meta, rows
from piiscrub.config import CustomTable, ScrubConfig, UrlPolicy
from piiscrub.db.db import init_db
from piiscrub.db.models import Comment, Post, PostMeta, User, UserMeta, XProfileData
from piiscrub.errors import GuardRejected, StoreError
from piiscrub.scrub.executor import Executor, RunState, scrub
from piiscrub.scrub.plan import OpKind, PlanBuilder, ScrubOperation, ScrubPlan
from piiscrub.scrub.transforms import PLACEHOLDER_URL, TransformLibrary

PASSWORD = "5f4dcc3b5aa765d61d8327deb882cf99"
PHONE_RX = re.compile(r"^\+44 7700 9\d{6}$")
USER_COLUMNS = ("ID", "user_login", "user_nicename", "display_name", "user_email", "user_pass", "user_url")


def run(store, config, **kwargs):
    return scrub(store.engine, config, password_hash=PASSWORD, **kwargs)


def test_identity_rows_are_rewritten(engine, store, config):
    run(store, config)
    alice, _, bob = rows(engine, User, *USER_COLUMNS, order_by="ID")
    assert alice == (1, "user-1", "user-1", "user-1", "user-1@gmail.com", PASSWORD, PLACEHOLDER_URL)
    assert bob == (3, "user-3", "user-3", "user-3", "user-3@yahoo.co.uk", PASSWORD, "")


def test_protected_identity_untouched(engine, store, config):
    before = rows(engine, User, *USER_COLUMNS, order_by="ID")[1]
    run(store, config)
    after = rows(engine, User, *USER_COLUMNS, order_by="ID")[1]
    assert after == before
    assert meta(engine, 2, "first_name") == "Staffer"
    assert meta(engine, 2, "billing_phone") == "0800 000000"


def test_no_protected_domain_scrubs_everyone(engine, store):
    run(store, ScrubConfig(confirmed=True, extra_user_fields=["billing_%"]))
    staff = rows(engine, User, *USER_COLUMNS, order_by="ID")[1]
    assert staff[1:5] == ("user-2", "user-2", "user-2", "user-2@psycle.com")
    assert meta(engine, 2, "first_name") == "XXXXX "
    assert PHONE_RX.match(meta(engine, 2, "billing_phone"))


def test_usermeta_by_classification(engine, store, config):
    run(store, config.model_copy(update={"extra_user_fields": ["billing_%"]}))
    assert meta(engine, 1, "first_name") == ""  # 5 chars rounds down to nothing
    assert meta(engine, 1, "last_name") == "XXXXX XXXXX "
    assert meta(engine, 1, "billing_email") == "billing_email-1@shop.com"
    assert PHONE_RX.match(meta(engine, 1, "billing_phone"))
    assert meta(engine, 1, "other_key") == "keep me"
    assert meta(engine, 3, "description") == ""


def test_phone_numbers_differ_per_row(engine, store, config):
    run(store, config.model_copy(update={"extra_user_fields": ["billing_phone"]}))
    first, third = meta(engine, 1, "billing_phone"), meta(engine, 3, "billing_phone")
    assert PHONE_RX.match(first) and PHONE_RX.match(third)
    assert first != third


def test_comment_authors(engine, store, config):
    run(store, config)
    alice, guest, staff = rows(
        engine, Comment, "comment_author", "comment_author_email", "comment_author_url", "comment_content",
        order_by="comment_ID",
    )
    assert alice == ("XXXXX XXXXX ", "user-1@gmail.com", PLACEHOLDER_URL, "Great post")
    assert guest == ("XXXXX XXXXX ", "user-0@mail.com", "", "Hello from a guest")
    assert staff == ("Dev Staff", "dev@psycle.com", "http://psycle.com", "Thanks!")


def test_url_always_policy(engine, store, config):
    run(store, config.model_copy(update={"url_policy": UrlPolicy.ALWAYS}))
    bob = rows(engine, User, "user_url", order_by="ID")[2]
    assert bob == (PLACEHOLDER_URL,)


def test_postmeta(engine, store, config):
    run(store, config.model_copy(update={"extra_content_fields": ["distribution_email", "memo_category%"]}))
    assert meta(engine, 10, "distribution_email", PostMeta, "post_id") == "distribution_email-10@corp.com"
    assert meta(engine, 10, "memo_category_a", PostMeta, "post_id") == "XXXXX "
    assert meta(engine, 10, "unrelated", PostMeta, "post_id") == "left alone"


def test_custom_table(engine, store, config):
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE wp_audit (id INTEGER PRIMARY KEY, user_email TEXT, note TEXT)"))
        conn.execute(text("INSERT INTO wp_audit (id, user_email, note) VALUES (5, 'carol@home.net', 'deleted post')"))
    cfg = config.model_copy(update={"custom_tables": [CustomTable(table="audit", columns=["user_email", "operation"])]})
    report = run(store, cfg)
    custom = [s for s in report.statements if "wp_audit" in s.sql]
    assert len(custom) == 1
    assert "`user_email` =" in custom[0].sql
    assert "operation" not in custom[0].sql
    with engine.connect() as conn:
        assert conn.execute(text("SELECT user_email, note FROM wp_audit")).one() == ("user_email-5@home.net", "deleted post")


def test_missing_custom_table_renders_nothing(engine, store, config):
    cfg = config.model_copy(update={"custom_tables": [CustomTable(table="audit", columns=["user_email"])]})
    report = run(store, cfg)
    assert not [s for s in report.statements if "audit" in s.sql]


def test_commerce_and_social_extensions(engine, store, config):
    init_db(engine, ["woocommerce", "buddypress"])
    with Session(engine) as s:
        s.add_all([
            Post(ID=20, post_type="shop_order", post_excerpt="Leave it with Mrs Jones at no 4"),
            Post(ID=21, post_type="post", post_excerpt="An ordinary excerpt"),
            PostMeta(post_id=20, meta_key="_billing_email", meta_value="alice@shop.com"),
            PostMeta(post_id=20, meta_key="Payer first name", meta_value="Alice"),
            XProfileData(field_id=1, user_id=1, value="Alice Anderson"),
            XProfileData(field_id=1, user_id=2, value="Dev Staff"),
            XProfileData(field_id=2, user_id=3, value=""),
        ])
        s.commit()
    run(store, config)
    assert meta(engine, 20, "_billing_email", PostMeta, "post_id") == "_billing_email-20@shop.com"
    assert meta(engine, 20, "Payer first name", PostMeta, "post_id") == ""
    with engine.connect() as conn:
        excerpts = conn.execute(text("SELECT post_excerpt FROM wp_posts ORDER BY ID")).scalars().all()
    assert excerpts == ["XXXXX " * 5, "An ordinary excerpt"]
    assert rows(engine, XProfileData, "value", order_by="id") == [("XXXXX XXXXX ",), ("Dev Staff",), ("",)]


def test_dry_run_matches_live_statements(engine, store, config):
    cfg = config.model_copy(update={"extra_user_fields": ["billing_%"], "extra_content_fields": ["memo_category%"]})
    before = rows(engine, User, *USER_COLUMNS, order_by="ID")
    echoed = []

    dry = run(store, cfg.model_copy(update={"dry_run": True}), echo=echoed.append)
    assert dry.executed == 0
    assert echoed == [s.sql for s in dry.statements]
    assert rows(engine, User, *USER_COLUMNS, order_by="ID") == before

    live = run(store, cfg)
    assert live.executed == len(live.statements)
    assert [s.sql for s in live.statements] == [s.sql for s in dry.statements]
    assert rows(engine, User, *USER_COLUMNS, order_by="ID") != before


def test_rendered_sql_inlines_bound_values(store, config):
    report = run(store, config.model_copy(update={"dry_run": True}))
    users = report.statements[0].sql
    assert users.startswith("UPDATE wp_users SET")
    assert f"user_pass = '{PASSWORD}'" in users
    assert "WHERE user_email NOT LIKE '%@psycle%' ESCAPE '!'" in users
    assert "'user-'" in users
    usermeta = report.statements[1].sql
    assert "meta_key IN ( 'first_name', 'last_name', 'nickname', 'description' )" in usermeta
    assert "user_id NOT IN ( SELECT ID FROM wp_users WHERE user_email LIKE '%@psycle%' ESCAPE '!' )" in usermeta


def test_meta_statements_split_by_category(store, config):
    report = run(store, config.model_copy(update={"dry_run": True, "extra_user_fields": ["billing_%", "website"]}))
    labels = [s.label for s in report.statements]
    assert labels == [
        "Users data",
        "Users meta data (email)",
        "Users meta data (url)",
        "Users meta data (phone)",
        "Users meta data (other)",
        "Commenters data",
    ]


def test_running_twice_keeps_invariants(engine, store, config):
    cfg = config.model_copy(update={"extra_user_fields": ["billing_%"]})
    staff_before = rows(engine, User, *USER_COLUMNS, order_by="ID")[1]
    run(store, cfg)
    once = meta(engine, 1, "last_name")
    run(store, cfg)
    assert meta(engine, 1, "last_name") == once == "XXXXX XXXXX "
    assert PHONE_RX.match(meta(engine, 1, "billing_phone"))
    assert meta(engine, 1, "billing_email") == "billing_email-1@shop.com"
    assert rows(engine, User, *USER_COLUMNS, order_by="ID")[1] == staff_before
    assert meta(engine, 2, "billing_phone") == "0800 000000"


def test_store_error_aborts_the_run(engine, store, config):
    transforms = TransformLibrary(PROTECTED)
    broken = ScrubOperation(kind=OpKind.COLUMNS, label="Gone", description="", table="wp_gone", targets=["note"])
    users = PlanBuilder(store, config, password_hash=PASSWORD).identity_op()
    executor = Executor(store, transforms)

    with pytest.raises(StoreError) as err:
        executor.run(ScrubPlan([broken, users]))
    assert "no such table: wp_gone" in str(err.value)
    assert err.value.__cause__ is not None
    assert executor.state is RunState.EXECUTING
    assert rows(engine, User, "user_login", order_by="ID")[0] == ("alice",)


def test_executor_state(store, config):
    executor = Executor(store, TransformLibrary(PROTECTED), dry_run=True)
    assert executor.state is RunState.IDLE
    executor.run(PlanBuilder(store, config).build())
    assert executor.state is RunState.DONE


def test_unconfirmed_run_is_rejected(engine, store):
    with pytest.raises(GuardRejected):
        run(store, ScrubConfig(protected_domain=PROTECTED))
    assert rows(engine, User, "user_login", order_by="ID")[0] == ("alice",)


def test_live_target_needs_override(store, config):
    with pytest.raises(GuardRejected):
        run(store, config.model_copy(update={"environment_is_protected_target": True}))
    report = run(store, config.model_copy(update={
        "environment_is_protected_target": True,
        "allow_protected_target_override": True,
        "dry_run": True,
    }))
    assert report.statements


def test_underscore_in_protected_domain_is_not_a_wildcard(engine, store):
    with Session(engine) as s:
        s.add_all([
            User(ID=8, user_login="ops", user_nicename="ops", display_name="Ops",
                 user_email="ops@acme_corp.com", user_url=""),
            User(ID=9, user_login="eve", user_nicename="eve", display_name="Eve",
                 user_email="eve@acmeXcorp.com", user_url=""),
            UserMeta(user_id=9, meta_key="last_name", meta_value="Evergreen"),
        ])
        s.commit()
    run(store, ScrubConfig(protected_domain="@acme_corp", confirmed=True))
    logins = dict(rows(engine, User, "ID", "user_login"))
    assert logins[8] == "ops"
    assert logins[9] == "user-9"
    assert rows(engine, User, "user_email", order_by="ID")[-1] == ("user-9@acmeXcorp.com",)
    assert meta(engine, 9, "last_name") == "XXXXX "


def test_scrub_uses_configured_prefix(engine, config):
    report = scrub(engine, config.model_copy(update={"table_prefix": "site2_", "dry_run": True}))
    assert report.statements[0].sql.startswith("UPDATE site2_users SET")
    assert all("wp_" not in s.sql for s in report.statements)


def test_scrub_runs_a_prebuilt_plan(engine, store, config):
    plan = PlanBuilder(store, config, password_hash=PASSWORD).build()
    report = scrub(engine, config, plan=plan)
    assert report.executed == len(report.statements)
    assert rows(engine, User, "user_pass", order_by="ID")[0] == (PASSWORD,)
