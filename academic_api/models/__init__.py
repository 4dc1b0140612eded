from .role import Role, RoleName, account_roles
from .account import Account
from .teacher import Teacher
from .student import Student
from .subject import Subject
from .course import Course, Enrollment
from .evaluation import EvaluationBlock, BlockWeighting
from .grade import Grade

__all__ = [
    "Role",
    "RoleName",
    "account_roles",
    "Account",
    "Teacher",
    "Student",
    "Subject",
    "Course",
    "Enrollment",
    "EvaluationBlock",
    "BlockWeighting",
    "Grade"
]
