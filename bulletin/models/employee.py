"""
Employee Model
Directory users: publishers, readers and announcement recipients
"""
from datetime import datetime
from typing import Optional
from enum import Enum
from pydantic import BaseModel, EmailStr, Field
from beanie import Document


class Role(str, Enum):
    """Directory roles"""
    EMPLOYEE = "employee"
    MANAGER = "manager"
    HR = "hr"
    ADMIN = "admin"


class Employee(Document):
    """Employee document model"""

    # Basic Information
    employee_id: str = Field(..., unique=True, index=True)
    first_name: str
    last_name: str
    email: EmailStr = Field(..., unique=True, index=True)

    # Employment Details
    department: Optional[str] = None
    role: Role = Role.EMPLOYEE

    # Authentication
    password_hash: str = ""
    is_active: bool = True
    is_verified: bool = False

    # Metadata
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_login: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    class Settings:
        name = "employees"
        indexes = [
            "employee_id",
            "email",
            "department",
            "role",
        ]

    class Config:
        json_schema_extra = {
            "example": {
                "employee_id": "EMP001",
                "first_name": "John",
                "last_name": "Doe",
                "email": "john.doe@company.com",
                "department": "Engineering",
                "role": "employee",
                "is_active": True,
                "is_verified": True
            }
        }


class DirectoryEntry(BaseModel):
    """Projection of an employee used for subscriber resolution"""
    employee_id: str
    department: Optional[str] = None
    role: Role = Role.EMPLOYEE
    is_active: bool = True
    is_verified: bool = False


class EmployeeProfile(BaseModel):
    """Current user summary returned by /auth/me"""
    employee_id: str
    name: str
    email: EmailStr
    department: Optional[str] = None
    role: Role
