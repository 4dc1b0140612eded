from sqlalchemy import Column, Integer, Float, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base


class Grade(Base):
    __tablename__ = "grades"
    __table_args__ = (
        UniqueConstraint("student_id", "course_id", "block_id", name="uq_grade_student_course_block"),
    )

    id = Column(Integer, primary_key=True, index=True)
    quiz_score = Column(Float, nullable=False)
    midterm_score = Column(Float, nullable=False)
    project_score = Column(Float, nullable=False)
    block_average = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False)
    block_id = Column(Integer, ForeignKey("evaluation_blocks.id"), nullable=False)

    student = relationship("Student", back_populates="grades")
    course = relationship("Course", back_populates="grades")
    block = relationship("EvaluationBlock", back_populates="grades")
