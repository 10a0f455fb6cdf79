# chatgate/storage/models.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Thread(Base):
    __tablename__ = "threads"

    id = Column(String(64), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    project_id = Column(String(64), nullable=True)
    title = Column(String(256), nullable=True)

    # Streaming state; a liveness hint, not a completeness guarantee
    is_live = Column(Boolean, default=False, nullable=False)
    current_stream_id = Column(String(64), nullable=True)
    stream_started_at = Column(BigInteger, nullable=True)  # epoch ms

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    messages = relationship(
        "Message", back_populates="thread", cascade="all, delete-orphan", order_by="Message.seq"
    )
    streams = relationship("Stream", back_populates="thread", cascade="all, delete-orphan")


class Message(Base):
    __tablename__ = "messages"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(64), nullable=False)
    thread_id = Column(String(64), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(32), nullable=False)  # user|assistant|tool
    parts = Column(JSON, nullable=False, default=list)
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    thread = relationship("Thread", back_populates="messages")

    __table_args__ = (
        CheckConstraint("role in ('user','assistant','tool')", name="ck_messages_role"),
        UniqueConstraint("thread_id", "message_id", name="uq_messages_thread_message"),
    )


class Stream(Base):
    __tablename__ = "streams"

    id = Column(String(64), primary_key=True)
    thread_id = Column(String(64), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(BigInteger, nullable=False)  # epoch ms

    thread = relationship("Thread", back_populates="streams")


class UsageEvent(Base):
    __tablename__ = "usage_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    model_id = Column(String(128), nullable=False)
    p = Column(Integer, nullable=False, default=0)  # prompt tokens
    c = Column(Integer, nullable=False, default=0)  # completion tokens
    r = Column(Integer, nullable=False, default=0)  # reasoning tokens
    days_since_epoch = Column(Integer, nullable=False)
    charged = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (Index("ix_usage_events_user_day", "user_id", "days_since_epoch"),)


class UserSettings(Base):
    __tablename__ = "user_settings"

    user_id = Column(String(64), primary_key=True)
    plan = Column(String(16), nullable=False, default="free")
    search_provider = Column(String(32), nullable=False, default="tavily")
    title_generation_model = Column(String(128), nullable=True)
    customization = Column(JSON, nullable=False, default=dict)
    core_providers = Column(JSON, nullable=False, default=dict)
    custom_providers = Column(JSON, nullable=False, default=dict)
    custom_models = Column(JSON, nullable=False, default=dict)
    general_providers = Column(JSON, nullable=False, default=dict)
    mcp_servers = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Document(Base):
    __tablename__ = "documents"

    id = Column(String(64), primary_key=True)
    workspace_id = Column(String(64), nullable=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(256), nullable=False, default="Untitled")
    content = Column(Text, nullable=True)  # editor JSON
    document_type = Column(String(32), nullable=True)
    description = Column(Text, nullable=True)
    is_locked = Column(Boolean, default=False)
    is_public = Column(Boolean, default=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
