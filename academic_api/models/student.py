from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base


class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, index=True)
    # Registration only fills the email; the rest comes from the student later
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    document = Column(String, nullable=True)
    email = Column(String, nullable=False)
    added_at = Column(DateTime(timezone=True), server_default=func.now())
    account_id = Column(Integer, ForeignKey("accounts.id"), unique=True, nullable=False)

    account = relationship("Account", back_populates="student")
    enrollments = relationship("Enrollment", back_populates="student", cascade="all, delete-orphan")
    grades = relationship("Grade", back_populates="student", cascade="all, delete-orphan")

    @property
    def has_complete_profile(self) -> bool:
        return bool(self.first_name and self.last_name)
