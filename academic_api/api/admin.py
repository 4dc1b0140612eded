from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import List, Optional
from ..core.database import get_db
from ..core.auth import Identity, require_admin
from ..core.errors import InternalError, NotFoundError, ValidationError
from ..models.account import Account
from ..models.role import RoleName
from ..models.teacher import Teacher
from ..models.subject import Subject
from ..models.course import Course
from ..models.evaluation import EvaluationBlock, BlockWeighting
from ..services.authentication import AuthenticationWorkflow
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


class TeacherCreate(BaseModel):
    username: str
    password: str
    email: EmailStr
    first_name: str
    last_name: str
    document: str


class TeacherResponse(BaseModel):
    id: int
    account_id: int
    first_name: str
    last_name: str
    document: str
    email: str

    class Config:
        from_attributes = True


class SubjectCreate(BaseModel):
    name: str
    description: Optional[str] = None


class SubjectResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


class CourseCreate(BaseModel):
    teacher_id: int
    subject_id: int
    period: str


class CourseResponse(BaseModel):
    id: int
    teacher_id: int
    subject_id: int
    period: str

    class Config:
        from_attributes = True


class CourseListEntry(BaseModel):
    id: int
    teacher_first_name: str
    teacher_last_name: str
    subject_name: str
    period: str


class BlockCreate(BaseModel):
    name: str


class WeightingUpdate(BaseModel):
    quiz_percentage: float = Field(ge=0, le=100)
    midterm_percentage: float = Field(ge=0, le=100)
    project_percentage: float = Field(ge=0, le=100)

    @model_validator(mode="after")
    def check_total(self):
        total = self.quiz_percentage + self.midterm_percentage + self.project_percentage
        if abs(total - 100) > 1e-9:
            raise ValueError(f"Percentages must add up to 100, got {total:g}")
        return self


class WeightingResponse(BaseModel):
    quiz_percentage: float
    midterm_percentage: float
    project_percentage: float

    class Config:
        from_attributes = True


class BlockResponse(BaseModel):
    id: int
    name: str
    weighting: Optional[WeightingResponse] = None


class AccountStatusUpdate(BaseModel):
    is_active: bool


def _require_text(value: str, field_name: str):
    if not value or not value.strip():
        raise ValidationError(f"{field_name} is required")


# Teachers
@router.post("/teachers", response_model=TeacherResponse, status_code=status.HTTP_201_CREATED)
async def create_teacher(teacher: TeacherCreate, db: AsyncSession = Depends(get_db),
                         admin: Identity = Depends(require_admin)):
    try:
        for field_name in ("username", "password", "first_name", "last_name", "document"):
            _require_text(getattr(teacher, field_name), field_name)

        email = teacher.email.lower()
        account = await AuthenticationWorkflow(db).create_account(
            teacher.username, email, teacher.password, RoleName.TEACHER,
            profile_factory=lambda acc: Teacher(
                first_name=teacher.first_name.strip(),
                last_name=teacher.last_name.strip(),
                document=teacher.document.strip(),
                email=email,
                account_id=acc.id
            )
        )

        result = await db.execute(select(Teacher).filter(Teacher.account_id == account.id))
        db_teacher = result.scalar_one()
        logger.info(f"Admin {admin.account_id} created teacher {db_teacher.id}")
        return db_teacher
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating teacher: {e}")
        await db.rollback()
        raise InternalError("Error creating teacher")


@router.get("/teachers", response_model=List[TeacherResponse])
async def get_teachers(db: AsyncSession = Depends(get_db), admin: Identity = Depends(require_admin)):
    try:
        result = await db.execute(select(Teacher).order_by(Teacher.last_name, Teacher.first_name))
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error getting teachers: {e}")
        raise InternalError("Error retrieving teachers")


# Subjects
@router.post("/subjects", response_model=SubjectResponse, status_code=status.HTTP_201_CREATED)
async def create_subject(subject: SubjectCreate, db: AsyncSession = Depends(get_db),
                         admin: Identity = Depends(require_admin)):
    try:
        _require_text(subject.name, "name")

        db_subject = Subject(name=subject.name.strip(), description=subject.description or None)
        db.add(db_subject)
        await db.commit()
        await db.refresh(db_subject)
        return db_subject
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating subject: {e}")
        await db.rollback()
        raise InternalError("Error creating subject")


@router.get("/subjects", response_model=List[SubjectResponse])
async def get_subjects(db: AsyncSession = Depends(get_db), admin: Identity = Depends(require_admin)):
    try:
        result = await db.execute(select(Subject).order_by(Subject.name))
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error getting subjects: {e}")
        raise InternalError("Error retrieving subjects")


# Courses
@router.post("/courses", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
async def create_course(course: CourseCreate, db: AsyncSession = Depends(get_db),
                        admin: Identity = Depends(require_admin)):
    try:
        _require_text(course.period, "period")

        teacher_result = await db.execute(select(Teacher.id).filter(Teacher.id == course.teacher_id))
        if teacher_result.first() is None:
            raise NotFoundError("Teacher not found")

        subject_result = await db.execute(select(Subject.id).filter(Subject.id == course.subject_id))
        if subject_result.first() is None:
            raise NotFoundError("Subject not found")

        db_course = Course(teacher_id=course.teacher_id, subject_id=course.subject_id,
                           period=course.period.strip())
        db.add(db_course)
        await db.commit()
        await db.refresh(db_course)
        return db_course
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating course: {e}")
        await db.rollback()
        raise InternalError("Error creating course")


@router.get("/courses", response_model=List[CourseListEntry])
async def get_courses(db: AsyncSession = Depends(get_db), admin: Identity = Depends(require_admin)):
    try:
        result = await db.execute(
            select(
                Course.id,
                Teacher.first_name.label("teacher_first_name"),
                Teacher.last_name.label("teacher_last_name"),
                Subject.name.label("subject_name"),
                Course.period
            )
            .select_from(Course)
            .join(Teacher, Course.teacher_id == Teacher.id)
            .join(Subject, Course.subject_id == Subject.id)
            .order_by(Course.id)
        )
        return [CourseListEntry(**row._mapping) for row in result.all()]
    except Exception as e:
        logger.error(f"Error getting courses: {e}")
        raise InternalError("Error retrieving courses")


# Evaluation blocks
@router.post("/blocks", response_model=BlockResponse, status_code=status.HTTP_201_CREATED)
async def create_block(block: BlockCreate, db: AsyncSession = Depends(get_db),
                       admin: Identity = Depends(require_admin)):
    try:
        _require_text(block.name, "name")

        db_block = EvaluationBlock(name=block.name.strip())
        db.add(db_block)
        await db.commit()
        await db.refresh(db_block)
        return BlockResponse(id=db_block.id, name=db_block.name)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating evaluation block: {e}")
        await db.rollback()
        raise InternalError("Error creating evaluation block")


@router.get("/blocks", response_model=List[BlockResponse])
async def get_blocks(db: AsyncSession = Depends(get_db), admin: Identity = Depends(require_admin)):
    try:
        result = await db.execute(
            select(EvaluationBlock, BlockWeighting)
            .outerjoin(BlockWeighting, BlockWeighting.block_id == EvaluationBlock.id)
            .order_by(EvaluationBlock.id)
        )
        return [
            BlockResponse(
                id=block.id,
                name=block.name,
                weighting=WeightingResponse.model_validate(weighting) if weighting else None
            )
            for block, weighting in result.all()
        ]
    except Exception as e:
        logger.error(f"Error getting evaluation blocks: {e}")
        raise InternalError("Error retrieving evaluation blocks")


@router.put("/blocks/{block_id}/weighting", response_model=BlockResponse)
async def set_block_weighting(block_id: int, weighting: WeightingUpdate, db: AsyncSession = Depends(get_db),
                              admin: Identity = Depends(require_admin)):
    try:
        block_result = await db.execute(select(EvaluationBlock).filter(EvaluationBlock.id == block_id))
        db_block = block_result.scalar_one_or_none()
        if not db_block:
            raise NotFoundError("Evaluation block not found")

        existing = await db.execute(select(BlockWeighting).filter(BlockWeighting.block_id == block_id))
        db_weighting = existing.scalar_one_or_none()
        if db_weighting:
            db_weighting.quiz_percentage = weighting.quiz_percentage
            db_weighting.midterm_percentage = weighting.midterm_percentage
            db_weighting.project_percentage = weighting.project_percentage
        else:
            db_weighting = BlockWeighting(block_id=block_id, **weighting.model_dump())
            db.add(db_weighting)

        await db.commit()
        await db.refresh(db_weighting)
        logger.info(f"Block {block_id} weighting set to {weighting.model_dump()}")
        return BlockResponse(
            id=db_block.id,
            name=db_block.name,
            weighting=WeightingResponse.model_validate(db_weighting)
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error setting weighting for block {block_id}: {e}")
        await db.rollback()
        raise InternalError("Error setting block weighting")


# Accounts
@router.patch("/accounts/{account_id}/status")
async def set_account_status(account_id: int, update: AccountStatusUpdate, db: AsyncSession = Depends(get_db),
                             admin: Identity = Depends(require_admin)):
    try:
        if account_id == admin.account_id and not update.is_active:
            raise ValidationError("Administrators cannot disable their own account")

        result = await db.execute(select(Account).filter(Account.id == account_id))
        account = result.scalar_one_or_none()
        if not account:
            raise NotFoundError("Account not found")

        account.is_active = update.is_active
        await db.commit()
        logger.info(f"Admin {admin.account_id} set account {account_id} active={update.is_active}")
        return {"id": account_id, "is_active": update.is_active}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating account status: {e}")
        await db.rollback()
        raise InternalError("Error updating account status")
