from sqlalchemy import Column, Integer, String, ForeignKey, Table
from sqlalchemy.orm import relationship
import enum
from ..core.database import Base


class RoleName(str, enum.Enum):
    ADMINISTRATOR = "Administrator"
    TEACHER = "Teacher"
    STUDENT = "Student"


account_roles = Table(
    "account_roles",
    Base.metadata,
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)

    accounts = relationship("Account", secondary=account_roles, back_populates="roles")
