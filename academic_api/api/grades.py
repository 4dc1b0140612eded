from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel, Field
from typing import List
from ..core.database import get_db
from ..core.auth import Identity, require_grader
from ..core.errors import ForbiddenError, InternalError, NotFoundError
from ..models.role import RoleName
from ..models.course import Course, Enrollment
from ..models.student import Student
from ..models.evaluation import EvaluationBlock
from ..models.grade import Grade
from ..services.authentication import find_teacher_profile
from ..utils.calculations import (
    MAX_SCORE, MIN_SCORE, academic_status, course_final_average, upsert_grade,
)
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


class ComponentScores(BaseModel):
    student_id: int
    block_id: int
    quiz_score: float = Field(ge=MIN_SCORE, le=MAX_SCORE)
    midterm_score: float = Field(ge=MIN_SCORE, le=MAX_SCORE)
    project_score: float = Field(ge=MIN_SCORE, le=MAX_SCORE)


class GradeCreate(ComponentScores):
    course_id: int


class GradeResponse(BaseModel):
    id: int
    student_id: int
    course_id: int
    block_id: int
    quiz_score: float
    midterm_score: float
    project_score: float
    weighted_average: float
    status: str


class GradeEntry(BaseModel):
    id: int
    block_id: int
    block_name: str
    quiz_score: float
    midterm_score: float
    project_score: float
    weighted_average: float
    status: str


class FinalAverageResponse(BaseModel):
    student_id: int
    course_id: int
    blocks_graded: int
    final_average: float
    status: str


def grade_response(grade: Grade) -> GradeResponse:
    return GradeResponse(
        id=grade.id,
        student_id=grade.student_id,
        course_id=grade.course_id,
        block_id=grade.block_id,
        quiz_score=grade.quiz_score,
        midterm_score=grade.midterm_score,
        project_score=grade.project_score,
        weighted_average=grade.block_average,
        status=academic_status(grade.block_average).value
    )


async def get_course_for_grader(db: AsyncSession, identity: Identity, course_id: int) -> Course:
    """Load the course; teachers only reach the courses they teach"""
    result = await db.execute(select(Course).filter(Course.id == course_id))
    course = result.scalar_one_or_none()
    if not course:
        raise NotFoundError("Course not found")

    if identity.has_role(RoleName.ADMINISTRATOR):
        return course

    teacher = await find_teacher_profile(db, identity.account_id)
    if teacher is None or course.teacher_id != teacher.id:
        logger.warning(f"Account {identity.account_id} tried to grade course {course_id} it does not teach")
        raise ForbiddenError("You are not assigned to this course")
    return course


async def record_grade(db: AsyncSession, identity: Identity, course_id: int,
                       scores: ComponentScores) -> GradeResponse:
    await get_course_for_grader(db, identity, course_id)

    student_result = await db.execute(select(Student.id).filter(Student.id == scores.student_id))
    if student_result.first() is None:
        raise NotFoundError("Student not found")

    enrollment_result = await db.execute(
        select(Enrollment.id).filter(
            Enrollment.student_id == scores.student_id,
            Enrollment.course_id == course_id
        )
    )
    if enrollment_result.first() is None:
        raise NotFoundError("Student is not enrolled in this course")

    block_result = await db.execute(select(EvaluationBlock.id).filter(EvaluationBlock.id == scores.block_id))
    if block_result.first() is None:
        raise NotFoundError("Evaluation block not found")

    grade = await upsert_grade(
        db,
        student_id=scores.student_id,
        course_id=course_id,
        block_id=scores.block_id,
        quiz_score=scores.quiz_score,
        midterm_score=scores.midterm_score,
        project_score=scores.project_score
    )
    return grade_response(grade)


async def list_course_grades(db: AsyncSession, student_id: int, course_id: int) -> List[GradeEntry]:
    result = await db.execute(
        select(Grade, EvaluationBlock.name)
        .join(EvaluationBlock, Grade.block_id == EvaluationBlock.id)
        .filter(Grade.student_id == student_id, Grade.course_id == course_id)
        .order_by(Grade.block_id)
    )
    return [
        GradeEntry(
            id=grade.id,
            block_id=grade.block_id,
            block_name=block_name,
            quiz_score=grade.quiz_score,
            midterm_score=grade.midterm_score,
            project_score=grade.project_score,
            weighted_average=grade.block_average,
            status=academic_status(grade.block_average).value
        )
        for grade, block_name in result.all()
    ]


@router.post("", response_model=GradeResponse, status_code=status.HTTP_201_CREATED)
async def create_grade(grade: GradeCreate, db: AsyncSession = Depends(get_db),
                       identity: Identity = Depends(require_grader)):
    try:
        return await record_grade(db, identity, grade.course_id, grade)
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error creating/updating grade: {e}")
        await db.rollback()
        raise InternalError("Error processing grade")


@router.get("/{student_id}/{course_id}", response_model=List[GradeEntry])
async def get_grades(student_id: int, course_id: int, db: AsyncSession = Depends(get_db),
                     identity: Identity = Depends(require_grader)):
    try:
        await get_course_for_grader(db, identity, course_id)
        return await list_course_grades(db, student_id, course_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting grades: {e}")
        raise InternalError("Error retrieving grades")


@router.get("/{student_id}/{course_id}/final", response_model=FinalAverageResponse)
async def get_final_average(student_id: int, course_id: int, db: AsyncSession = Depends(get_db),
                            identity: Identity = Depends(require_grader)):
    try:
        await get_course_for_grader(db, identity, course_id)
        return await course_final_average(db, student_id, course_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error calculating final average: {e}")
        raise InternalError("Error calculating final average")
