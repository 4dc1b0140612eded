from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base


class EvaluationBlock(Base):
    __tablename__ = "evaluation_blocks"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    weighting = relationship("BlockWeighting", back_populates="block", uselist=False,
                             cascade="all, delete-orphan")
    grades = relationship("Grade", back_populates="block")


class BlockWeighting(Base):
    """Quiz/midterm/project percentages of one evaluation block (parts of 100)"""

    __tablename__ = "block_weightings"

    id = Column(Integer, primary_key=True, index=True)
    quiz_percentage = Column(Float, nullable=False)
    midterm_percentage = Column(Float, nullable=False)
    project_percentage = Column(Float, nullable=False)
    block_id = Column(Integer, ForeignKey("evaluation_blocks.id"), unique=True, nullable=False)

    block = relationship("EvaluationBlock", back_populates="weighting")
