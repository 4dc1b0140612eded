from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from pydantic import BaseModel
from typing import List, Optional
from ..core.database import get_db
from ..core.auth import Identity, require_teacher
from ..core.errors import ConflictError, InternalError, NotFoundError
from ..models.course import Course, Enrollment
from ..models.student import Student
from ..models.subject import Subject
from ..models.teacher import Teacher
from ..services.authentication import find_teacher_profile
from .grades import ComponentScores, GradeResponse, record_grade
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


class CourseResponse(BaseModel):
    id: int
    subject_name: str
    period: str


class StudentResponse(BaseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    document: Optional[str] = None


class CourseStudentsResponse(BaseModel):
    students: List[StudentResponse]
    alert: Optional[str] = None


class AvailableStudent(BaseModel):
    id: int
    first_name: str
    last_name: str
    document: Optional[str] = None


async def current_teacher(db: AsyncSession, identity: Identity) -> Teacher:
    teacher = await find_teacher_profile(db, identity.account_id)
    if not teacher:
        raise NotFoundError("Teacher profile not found")
    return teacher


async def get_own_course(db: AsyncSession, teacher: Teacher, course_id: int) -> Course:
    result = await db.execute(select(Course).filter(Course.id == course_id, Course.teacher_id == teacher.id))
    course = result.scalar_one_or_none()
    if not course:
        raise NotFoundError("Course not found")
    return course


# Courses
@router.get("/courses", response_model=List[CourseResponse])
async def get_courses(db: AsyncSession = Depends(get_db), identity: Identity = Depends(require_teacher)):
    try:
        teacher = await current_teacher(db, identity)
        result = await db.execute(
            select(Course.id, Subject.name.label("subject_name"), Course.period)
            .select_from(Course)
            .join(Subject, Course.subject_id == Subject.id)
            .filter(Course.teacher_id == teacher.id)
            .order_by(Course.period, Course.id)
        )
        return [CourseResponse(**row._mapping) for row in result.all()]
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting courses: {e}")
        raise InternalError("Error retrieving courses")


# Students
@router.get("/courses/{course_id}/students", response_model=CourseStudentsResponse)
async def get_course_students(course_id: int, db: AsyncSession = Depends(get_db),
                              identity: Identity = Depends(require_teacher)):
    try:
        teacher = await current_teacher(db, identity)
        await get_own_course(db, teacher, course_id)

        result = await db.execute(
            select(Student)
            .join(Enrollment, Enrollment.student_id == Student.id)
            .filter(Enrollment.course_id == course_id)
            .order_by(Student.last_name, Student.first_name, Student.id)
        )
        students = result.scalars().all()

        complete = [s for s in students if s.has_complete_profile]
        incomplete = len(students) - len(complete)

        return CourseStudentsResponse(
            students=[
                StudentResponse(id=s.id, first_name=s.first_name, last_name=s.last_name, document=s.document)
                for s in complete
            ],
            alert=f"{incomplete} student(s) without a complete profile" if incomplete else None
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting students of course {course_id}: {e}")
        raise InternalError("Error retrieving students")


@router.get("/students/available", response_model=List[AvailableStudent])
async def get_available_students(db: AsyncSession = Depends(get_db),
                                 identity: Identity = Depends(require_teacher)):
    try:
        result = await db.execute(select(Student).order_by(Student.id))
        return [
            AvailableStudent(
                id=s.id,
                first_name=s.first_name or "NO NAME",
                last_name=s.last_name or "NO SURNAME",
                document=s.document
            )
            for s in result.scalars().all()
        ]
    except Exception as e:
        logger.error(f"Error getting available students: {e}")
        raise InternalError("Error retrieving available students")


@router.post("/courses/{course_id}/students/{student_id}", status_code=status.HTTP_201_CREATED)
async def enroll_student(course_id: int, student_id: int, db: AsyncSession = Depends(get_db),
                         identity: Identity = Depends(require_teacher)):
    try:
        teacher = await current_teacher(db, identity)
        await get_own_course(db, teacher, course_id)

        student_result = await db.execute(select(Student.id).filter(Student.id == student_id))
        if student_result.first() is None:
            raise NotFoundError("Student not found")

        existing = await db.execute(
            select(Enrollment.id).filter(Enrollment.course_id == course_id, Enrollment.student_id == student_id)
        )
        if existing.first() is not None:
            raise ConflictError("Student already enrolled in this course")

        db.add(Enrollment(course_id=course_id, student_id=student_id))
        await db.commit()
        logger.info(f"Student {student_id} enrolled in course {course_id}")
        return {"message": "Student enrolled successfully"}
    except HTTPException:
        raise
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Student already enrolled in this course")
    except Exception as e:
        logger.error(f"Error enrolling student: {e}")
        await db.rollback()
        raise InternalError("Error enrolling student")


# Grades
@router.post("/courses/{course_id}/grades", response_model=GradeResponse, status_code=status.HTTP_201_CREATED)
async def save_grade(course_id: int, grade: ComponentScores, db: AsyncSession = Depends(get_db),
                     identity: Identity = Depends(require_teacher)):
    try:
        return await record_grade(db, identity, course_id, grade)
    except HTTPException:
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error saving grade: {e}")
        await db.rollback()
        raise InternalError("Error saving grade")
