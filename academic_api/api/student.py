from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel
from typing import List, Optional
from ..core.database import get_db
from ..core.auth import Identity, require_student
from ..core.errors import InternalError, NotFoundError, ValidationError
from ..models.course import Course, Enrollment
from ..models.evaluation import EvaluationBlock
from ..models.grade import Grade
from ..models.student import Student
from ..models.subject import Subject
from ..services.authentication import find_student_profile
from ..utils.calculations import academic_status, overall_standing, student_history
from .grades import GradeEntry, list_course_grades
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


class ProfileResponse(BaseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    document: Optional[str] = None
    email: str

    class Config:
        from_attributes = True


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    document: Optional[str] = None


class EnrolledCourse(BaseModel):
    id: int
    subject_name: str
    period: str


class GradeSummary(BaseModel):
    course_id: int
    subject_name: str
    block_name: str
    quiz_score: float
    midterm_score: float
    project_score: float
    weighted_average: float
    status: str


class HistoryEntry(BaseModel):
    course_id: int
    subject_name: str
    period: str
    blocks_graded: int
    final_average: float
    status: str


class Standing(BaseModel):
    overall_average: float
    status: str


class HistoryResponse(BaseModel):
    courses: List[HistoryEntry]
    overall: Optional[Standing] = None


async def current_student(db: AsyncSession, identity: Identity) -> Student:
    student = await find_student_profile(db, identity.account_id)
    if not student:
        raise NotFoundError("Student profile not found")
    return student


# Profile
@router.get("/profile", response_model=ProfileResponse)
async def get_profile(db: AsyncSession = Depends(get_db), identity: Identity = Depends(require_student)):
    try:
        return await current_student(db, identity)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting profile: {e}")
        raise InternalError("Error retrieving profile")


@router.put("/profile", response_model=ProfileResponse)
async def update_profile(profile: ProfileUpdate, db: AsyncSession = Depends(get_db),
                         identity: Identity = Depends(require_student)):
    try:
        if not all(value and value.strip() for value in (profile.first_name, profile.last_name, profile.document)):
            raise ValidationError("First name, last name and document are required")

        student = await current_student(db, identity)
        student.first_name = profile.first_name.strip()
        student.last_name = profile.last_name.strip()
        student.document = profile.document.strip()
        await db.commit()
        await db.refresh(student)
        logger.info(f"Student {student.id} updated profile")
        return student
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating profile: {e}")
        await db.rollback()
        raise InternalError("Error updating profile")


@router.get("/me")
async def get_me(db: AsyncSession = Depends(get_db), identity: Identity = Depends(require_student)):
    """Minimal student data for dashboards, with empty strings instead of nulls"""
    try:
        student = await current_student(db, identity)
        return {
            "id": student.id,
            "first_name": student.first_name or "",
            "last_name": student.last_name or "",
            "document": student.document or "",
            "email": student.email or ""
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting student: {e}")
        raise InternalError("Error retrieving student")


# Courses
@router.get("/courses", response_model=List[EnrolledCourse])
async def get_courses(db: AsyncSession = Depends(get_db), identity: Identity = Depends(require_student)):
    try:
        student = await current_student(db, identity)
        result = await db.execute(
            select(Course.id, Subject.name.label("subject_name"), Course.period)
            .select_from(Course)
            .join(Enrollment, Enrollment.course_id == Course.id)
            .join(Subject, Course.subject_id == Subject.id)
            .filter(Enrollment.student_id == student.id)
            .order_by(Course.period, Course.id)
        )
        return [EnrolledCourse(**row._mapping) for row in result.all()]
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting student courses: {e}")
        raise InternalError("Error retrieving courses")


# Grades
@router.get("/courses/{course_id}/grades", response_model=List[GradeEntry])
async def get_course_grades(course_id: int, db: AsyncSession = Depends(get_db),
                            identity: Identity = Depends(require_student)):
    try:
        student = await current_student(db, identity)
        return await list_course_grades(db, student.id, course_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting course grades: {e}")
        raise InternalError("Error retrieving grades")


@router.get("/grades", response_model=List[GradeSummary])
async def get_all_grades(db: AsyncSession = Depends(get_db), identity: Identity = Depends(require_student)):
    try:
        student = await current_student(db, identity)
        result = await db.execute(
            select(Grade, Subject.name, EvaluationBlock.name)
            .select_from(Grade)
            .join(Course, Grade.course_id == Course.id)
            .join(Subject, Course.subject_id == Subject.id)
            .join(EvaluationBlock, Grade.block_id == EvaluationBlock.id)
            .filter(Grade.student_id == student.id)
            .order_by(Grade.course_id, Grade.block_id)
        )
        return [
            GradeSummary(
                course_id=grade.course_id,
                subject_name=subject_name,
                block_name=block_name,
                quiz_score=grade.quiz_score,
                midterm_score=grade.midterm_score,
                project_score=grade.project_score,
                weighted_average=grade.block_average,
                status=academic_status(grade.block_average).value
            )
            for grade, subject_name, block_name in result.all()
        ]
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting student grades: {e}")
        raise InternalError("Error retrieving grades")


# History
@router.get("/history", response_model=HistoryResponse)
async def get_history(db: AsyncSession = Depends(get_db), identity: Identity = Depends(require_student)):
    try:
        student = await current_student(db, identity)
        history = await student_history(db, student.id)
        return HistoryResponse(courses=history, overall=overall_standing(history))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting academic history: {e}")
        raise InternalError("Error retrieving academic history")
