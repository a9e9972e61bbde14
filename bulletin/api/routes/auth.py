"""
Authentication Routes
Login and current-user lookup for directory employees
"""
from fastapi import APIRouter, HTTPException, Depends, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel
from datetime import datetime, timedelta
from jose import JWTError, jwt
from passlib.context import CryptContext
from typing import Optional

from bulletin.config import settings
from bulletin.models.employee import Employee, EmployeeProfile


router = APIRouter()

# Password hashing
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

# OAuth2 scheme
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class Token(BaseModel):
    """Token response"""
    access_token: str
    token_type: str
    expires_in: int


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash"""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash password"""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def employee_from_token(token: Optional[str]) -> Optional[Employee]:
    """Resolve a bearer token to an active employee, or None"""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    employee_id = payload.get("sub")
    if employee_id is None:
        return None

    employee = await Employee.find_one(Employee.employee_id == employee_id)
    if employee is None or not employee.is_active:
        return None
    return employee


async def get_current_employee(token: str = Depends(oauth2_scheme)) -> Employee:
    """Get current authenticated employee"""
    employee = await employee_from_token(token)
    if employee is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return employee


@router.post("/login", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends()):
    """
    Login with email and password
    """
    # Username field contains the email
    employee = await Employee.find_one(Employee.email == form_data.username)

    if not employee or not verify_password(form_data.password, employee.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not employee.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive"
        )

    employee.last_login = datetime.utcnow()
    await employee.save()

    access_token = create_access_token(
        data={"sub": employee.employee_id, "email": employee.email},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    }


@router.get("/me", response_model=EmployeeProfile)
async def get_current_user(current_employee: Employee = Depends(get_current_employee)):
    """
    Get current authenticated employee details
    """
    return EmployeeProfile(
        employee_id=current_employee.employee_id,
        name=current_employee.full_name,
        email=current_employee.email,
        department=current_employee.department,
        role=current_employee.role,
    )
