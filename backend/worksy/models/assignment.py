from datetime import datetime
from uuid import uuid4

from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from worksy.database import Base, JSONType
from worksy.timeutil import utcnow

MODES = ("red", "amber", "green")


class Assignment(Base):
    __tablename__ = "assignments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid4()))
    module_code: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(300))
    mode: Mapped[str] = mapped_column(String(10), default="amber")  # "red" | "amber" | "green"
    prompt_cap: Mapped[int] = mapped_column(Integer, default=100)
    output_token_cap: Mapped[int] = mapped_column(Integer, default=500)
    input_token_cap: Mapped[int] = mapped_column(Integer, default=1000)
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rate_limit_n: Mapped[int] = mapped_column(Integer, default=3)
    rate_limit_window_s: Mapped[int] = mapped_column(Integer, default=10)
    policy_version: Mapped[int] = mapped_column(Integer, default=1)
    config_version: Mapped[int] = mapped_column(Integer, default=1)
    prompt_templates: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
