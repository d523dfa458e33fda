from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Text, DateTime, Integer, func

# Reference WordPress schema (default "wp_" prefix). Only used to create
# trial copies and test fixtures; scrubbing itself works on raw table names.
Base = declarative_base()

class User(Base):
    __tablename__ = "wp_users"
    ID: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_login: Mapped[str] = mapped_column(String(60), default="", index=True)
    user_pass: Mapped[str] = mapped_column(String(255), default="")
    user_nicename: Mapped[str] = mapped_column(String(50), default="")
    user_email: Mapped[str] = mapped_column(String(100), default="", index=True)
    user_url: Mapped[str] = mapped_column(String(100), default="")
    user_registered: Mapped[DateTime] = mapped_column(DateTime, server_default=func.now())
    display_name: Mapped[str] = mapped_column(String(250), default="")

class UserMeta(Base):
    __tablename__ = "wp_usermeta"
    umeta_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, default=0, index=True)
    meta_key: Mapped[str | None] = mapped_column(String(255), index=True)
    meta_value: Mapped[str | None] = mapped_column(Text)

class Post(Base):
    __tablename__ = "wp_posts"
    ID: Mapped[int] = mapped_column(Integer, primary_key=True)
    post_author: Mapped[int] = mapped_column(Integer, default=0)
    post_title: Mapped[str] = mapped_column(Text, default="")
    post_content: Mapped[str] = mapped_column(Text, default="")
    post_excerpt: Mapped[str] = mapped_column(Text, default="")
    post_status: Mapped[str] = mapped_column(String(20), default="publish")
    post_type: Mapped[str] = mapped_column(String(20), default="post", index=True)

class PostMeta(Base):
    __tablename__ = "wp_postmeta"
    meta_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    post_id: Mapped[int] = mapped_column(Integer, default=0, index=True)
    meta_key: Mapped[str | None] = mapped_column(String(255), index=True)
    meta_value: Mapped[str | None] = mapped_column(Text)

class Comment(Base):
    __tablename__ = "wp_comments"
    comment_ID: Mapped[int] = mapped_column(Integer, primary_key=True)
    comment_post_ID: Mapped[int] = mapped_column(Integer, default=0, index=True)
    comment_author: Mapped[str] = mapped_column(Text, default="")
    comment_author_email: Mapped[str] = mapped_column(String(100), default="")
    comment_author_url: Mapped[str] = mapped_column(String(200), default="")
    comment_content: Mapped[str] = mapped_column(Text, default="")
    comment_type: Mapped[str] = mapped_column(String(20), default="comment")
    user_id: Mapped[int] = mapped_column(Integer, default=0)

# Plugin tables. Their presence is what marks an extension as installed.
class WooCommerceSession(Base):
    __tablename__ = "wp_woocommerce_sessions"
    session_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_key: Mapped[str] = mapped_column(String(32), unique=True)
    session_value: Mapped[str] = mapped_column(Text, default="")

class XProfileData(Base):
    __tablename__ = "wp_bp_xprofile_data"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    field_id: Mapped[int] = mapped_column(Integer, default=0, index=True)
    user_id: Mapped[int] = mapped_column(Integer, default=0, index=True)
    value: Mapped[str] = mapped_column(Text, default="")

CORE_TABLES = (User, UserMeta, Post, PostMeta, Comment)
EXTENSION_TABLES = {
    "woocommerce": (WooCommerceSession,),
    "buddypress": (XProfileData,),
}
