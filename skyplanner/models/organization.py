"""Organization (tenant) model."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from skyplanner.models.base import BaseModel


class Organization(BaseModel):
    """A customer company; every tenant-scoped request resolves to one."""

    __tablename__ = "organizations"

    navn: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)

    def __repr__(self) -> str:
        return f"<Organization {self.slug}>"
