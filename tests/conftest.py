import pytest
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from piiscrub.config import ScrubConfig
from piiscrub.db.db import Store, init_db, make_engine
from piiscrub.db.models import Comment, PostMeta, User, UserMeta

PROTECTED = "@psycle"


def seed(engine):
    """A small site: two customers, one member of staff, a guest commenter."""
    with Session(engine) as s:
        s.add_all([
            User(ID=1, user_login="alice", user_nicename="alice", display_name="Alice Anderson",
                 user_email="alice@gmail.com", user_pass="$P$alicehash", user_url="http://alice.me"),
            User(ID=2, user_login="dev", user_nicename="dev", display_name="Dev Staff",
                 user_email="dev@psycle.com", user_pass="$P$devhash", user_url="http://psycle.com"),
            User(ID=3, user_login="bob", user_nicename="bob", display_name="Bob",
                 user_email="bob@yahoo.co.uk", user_pass="$P$bobhash", user_url=""),
        ])
        s.add_all([
            UserMeta(user_id=1, meta_key="first_name", meta_value="Alice"),
            UserMeta(user_id=1, meta_key="last_name", meta_value="Anderson-Smith"),
            UserMeta(user_id=1, meta_key="billing_email", meta_value="alice@shop.com"),
            UserMeta(user_id=1, meta_key="billing_phone", meta_value="01234 567890"),
            UserMeta(user_id=1, meta_key="other_key", meta_value="keep me"),
            UserMeta(user_id=2, meta_key="first_name", meta_value="Staffer"),
            UserMeta(user_id=2, meta_key="billing_phone", meta_value="0800 000000"),
            UserMeta(user_id=3, meta_key="billing_phone", meta_value="07700 900123"),
            UserMeta(user_id=3, meta_key="description", meta_value=""),
        ])
        s.add_all([
            Comment(comment_post_ID=10, comment_author="Alice Anderson", comment_author_email="alice@gmail.com",
                    comment_author_url="http://alice.me", comment_content="Great post", user_id=1),
            Comment(comment_post_ID=10, comment_author="Guest Person", comment_author_email="guest@mail.com",
                    comment_author_url="", comment_content="Hello from a guest", user_id=0),
            Comment(comment_post_ID=10, comment_author="Dev Staff", comment_author_email="dev@psycle.com",
                    comment_author_url="http://psycle.com", comment_content="Thanks!", user_id=2),
        ])
        s.add_all([
            PostMeta(post_id=10, meta_key="distribution_email", meta_value="list@corp.com"),
            PostMeta(post_id=10, meta_key="memo_category_a", meta_value="secret memo"),
            PostMeta(post_id=10, meta_key="unrelated", meta_value="left alone"),
        ])
        s.commit()


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    init_db(engine)
    seed(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return Store(engine, prefix="wp_")


@pytest.fixture
def config():
    return ScrubConfig(protected_domain=PROTECTED, confirmed=True)


def rows(engine, model, *columns, order_by=None):
    with Session(engine) as s:
        query = s.query(*[getattr(model, c) for c in columns])
        if order_by:
            query = query.order_by(getattr(model, order_by))
        return [tuple(r) for r in query.all()]


def meta(engine, user_id, key, model=UserMeta, owner="user_id"):
    with Session(engine) as s:
        row = s.query(model).filter(getattr(model, owner) == user_id, model.meta_key == key).one()
        return row.meta_value
