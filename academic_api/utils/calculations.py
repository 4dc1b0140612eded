from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional
import enum
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from ..core.errors import ConfigurationMissing, NotFoundError
from ..models.grade import Grade
from ..models.course import Course
from ..models.subject import Subject
from ..models.evaluation import BlockWeighting
import logging

logger = logging.getLogger(__name__)

MIN_SCORE = 0.0
MAX_SCORE = 5.0
PASSING_AVERAGE = Decimal("3.0")

_TWO_PLACES = Decimal("0.01")


class AcademicStatus(str, enum.Enum):
    PASSED = "Passed"
    FAILED = "Failed"


def round_score(value) -> Decimal:
    """Round to 2 decimals, half-up"""
    return Decimal(str(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def compute_block_average(quiz_score, midterm_score, project_score,
                          weighting: Optional[BlockWeighting]) -> Decimal:
    """
    Weighted block average: each score times its percentage, summed, over 100
    """
    if weighting is None:
        raise ConfigurationMissing("No percentage configuration exists for this block")

    weighted = (
        Decimal(str(quiz_score)) * Decimal(str(weighting.quiz_percentage))
        + Decimal(str(midterm_score)) * Decimal(str(weighting.midterm_percentage))
        + Decimal(str(project_score)) * Decimal(str(weighting.project_percentage))
    )
    return round_score(weighted / Decimal(100))


def academic_status(average) -> AcademicStatus:
    return AcademicStatus.PASSED if Decimal(str(average)) >= PASSING_AVERAGE else AcademicStatus.FAILED


def mean_of(values: Iterable) -> Optional[Decimal]:
    values = [Decimal(str(v)) for v in values]
    if not values:
        return None
    return round_score(sum(values) / len(values))


async def get_block_weighting(session: AsyncSession, block_id: int) -> Optional[BlockWeighting]:
    result = await session.execute(
        select(BlockWeighting).filter(BlockWeighting.block_id == block_id)
    )
    return result.scalar_one_or_none()


async def upsert_grade(session: AsyncSession, student_id: int, course_id: int, block_id: int,
                       quiz_score: float, midterm_score: float, project_score: float) -> Grade:
    """
    Store the grade for (student, course, block), recomputing its average.

    An existing row is updated in place. Last write wins; an insert that loses
    a race against a concurrent insert is retried as an update.
    """
    weighting = await get_block_weighting(session, block_id)
    average = compute_block_average(quiz_score, midterm_score, project_score, weighting)

    values = {
        "quiz_score": quiz_score,
        "midterm_score": midterm_score,
        "project_score": project_score,
        "block_average": float(average),
    }

    for attempt in range(2):
        existing = await session.execute(
            select(Grade).filter(
                Grade.student_id == student_id,
                Grade.course_id == course_id,
                Grade.block_id == block_id
            )
        )
        db_grade = existing.scalar_one_or_none()

        if db_grade:
            for key, value in values.items():
                setattr(db_grade, key, value)
        else:
            db_grade = Grade(student_id=student_id, course_id=course_id, block_id=block_id, **values)
            session.add(db_grade)

        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if attempt:
                raise
            logger.warning(
                f"Concurrent grade insert for student {student_id}, course {course_id}, "
                f"block {block_id}; retrying as update"
            )
            continue

        await session.refresh(db_grade)
        logger.info(
            f"Stored grade for student {student_id}, course {course_id}, block {block_id}: "
            f"average {average}"
        )
        return db_grade


async def course_final_average(session: AsyncSession, student_id: int, course_id: int) -> dict:
    """
    Final average of a student in a course: the mean of the block averages
    """
    result = await session.execute(
        select(Grade.block_average).filter(
            and_(
                Grade.student_id == student_id,
                Grade.course_id == course_id
            )
        )
    )
    averages = result.scalars().all()

    if not averages:
        raise NotFoundError("No grades recorded for this student in this course")

    final_average = mean_of(averages)
    return {
        "student_id": student_id,
        "course_id": course_id,
        "blocks_graded": len(averages),
        "final_average": float(final_average),
        "status": academic_status(final_average).value
    }


async def student_history(session: AsyncSession, student_id: int) -> List[dict]:
    """
    Per-course final averages for every course the student has grades in
    """
    result = await session.execute(
        select(
            Course.id.label("course_id"),
            Subject.name.label("subject_name"),
            Course.period,
            func.count(Grade.id).label("blocks_graded"),
        )
        .select_from(Grade)
        .join(Course, Grade.course_id == Course.id)
        .join(Subject, Course.subject_id == Subject.id)
        .filter(Grade.student_id == student_id)
        .group_by(Course.id, Subject.name, Course.period)
        .order_by(Course.period, Course.id)
    )
    rows = result.all()

    history = []
    for row in rows:
        averages_result = await session.execute(
            select(Grade.block_average).filter(
                Grade.student_id == student_id,
                Grade.course_id == row.course_id
            )
        )
        # Averaged in Python so the rounding matches the block averages
        final_average = mean_of(averages_result.scalars().all())
        history.append({
            "course_id": row.course_id,
            "subject_name": row.subject_name,
            "period": row.period,
            "blocks_graded": row.blocks_graded,
            "final_average": float(final_average),
            "status": academic_status(final_average).value
        })

    logger.info(f"Built academic history for student {student_id}: {len(history)} courses")
    return history


def overall_standing(history: List[dict]) -> Optional[dict]:
    """Mean of the per-course final averages, or None without graded courses"""
    overall = mean_of(entry["final_average"] for entry in history)
    if overall is None:
        return None
    return {
        "overall_average": float(overall),
        "status": academic_status(overall).value
    }
