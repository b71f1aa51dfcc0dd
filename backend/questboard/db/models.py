import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from questboard.db.base import Base


def _utcnow() -> datetime:
    # SQLite CURRENT_TIMESTAMP only has whole-second resolution
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    quests: Mapped[list["Quest"]] = relationship("Quest", back_populates="owner_user")

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.name!r}>"


class Quest(Base):
    __tablename__ = "quests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    pages: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
        comment="Number of contiguous page slots [0, pages) written at least once",
    )
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    owner_user: Mapped["User"] = relationship("User", back_populates="quests")
    page_rows: Mapped[list["QuestPage"]] = relationship(
        "QuestPage", back_populates="quest", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_quests_owner", "owner"),
    )

    def __repr__(self) -> str:
        return f"<Quest id={self.id} pages={self.pages} published={self.published}>"


class QuestPage(Base):
    __tablename__ = "quest_pages"

    quest_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("quests.id", ondelete="CASCADE"), primary_key=True
    )
    page: Mapped[int] = mapped_column(Integer, primary_key=True)
    source: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Raw page markup, parsed only when played"
    )
    time_limit_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    quest: Mapped["Quest"] = relationship("Quest", back_populates="page_rows")

    def __repr__(self) -> str:
        return f"<QuestPage quest_id={self.quest_id} page={self.page}>"


class QuestApplication(Base):
    """Per-player progress through one quest."""

    __tablename__ = "quest_applications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    quest_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("quests.id", ondelete="CASCADE"), primary_key=True
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_pages: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
        comment="Index of the next page the player must request",
    )
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_quest_applications_quest_id", "quest_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuestApplication user_id={self.user_id} quest_id={self.quest_id} "
            f"completed_pages={self.completed_pages}>"
        )
