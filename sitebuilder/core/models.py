import json
import time
import uuid

from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Integer, String, Text, UniqueConstraint

from .db import Base


def now_ms() -> int:
    """Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    username = Column(String(200), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)

    password_hash = Column(String(128), nullable=False)
    salt = Column(String(64), nullable=False)

    is_admin = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    profile_picture_url = Column(String(500), nullable=False, default="")
    bio = Column(Text, nullable=False, default="")
    settings = Column(Text, nullable=False, default="{}")

    created_at = Column(BigInteger, nullable=False, default=now_ms)
    last_login = Column(BigInteger, nullable=False, default=now_ms)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")

    # Editor document; stored and returned verbatim
    content = Column(Text, nullable=False)

    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    is_public = Column(Boolean, nullable=False, default=False)
    tags = Column(Text, nullable=False, default="[]")

    created_at = Column(BigInteger, nullable=False, default=now_ms)
    updated_at = Column(BigInteger, nullable=False, default=now_ms)

    @property
    def tag_list(self) -> list[str]:
        return decode_tags(self.tags)


class Component(Base):
    __tablename__ = "components"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    content = Column(Text, nullable=False)

    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    is_public = Column(Boolean, nullable=False, default=False)
    usage_count = Column(Integer, nullable=False, default=0)
    tags = Column(Text, nullable=False, default="[]")

    created_at = Column(BigInteger, nullable=False, default=now_ms)
    updated_at = Column(BigInteger, nullable=False, default=now_ms)

    @property
    def tag_list(self) -> list[str]:
        return decode_tags(self.tags)


class UserProject(Base):
    __tablename__ = "user_projects"
    __table_args__ = (UniqueConstraint("user_id", "project_id"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)

    role = Column(String(20), nullable=False)  # owner | editor | viewer
    can_edit = Column(Boolean, nullable=False, default=False)
    can_share = Column(Boolean, nullable=False, default=False)
    can_delete = Column(Boolean, nullable=False, default=False)

    created_at = Column(BigInteger, nullable=False, default=now_ms)
    last_accessed = Column(BigInteger, nullable=False, default=now_ms)


class Setting(Base):
    __tablename__ = "settings"

    # "{user_id}_{key}"
    id = Column(String(300), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    key = Column(String(200), nullable=False)
    value = Column(Text, nullable=False)

    created_at = Column(BigInteger, nullable=False, default=now_ms)
    updated_at = Column(BigInteger, nullable=False, default=now_ms)


class SchemaVersion(Base):
    __tablename__ = "schema_version"

    version = Column(Integer, primary_key=True, nullable=False)


def setting_id(user_id: str, key: str) -> str:
    return f"{user_id}_{key}"


def encode_tags(tags) -> str:
    return json.dumps([str(t) for t in (tags or [])])


def decode_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(t) for t in value] if isinstance(value, list) else []
