"""
Pydantic schemas.

Why:
- Validation (e.g., strings not empty, correct types)
- Defines the contract of our REST endpoints

Fields are snake_case in Python and camelCase on the wire.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, List, Optional

from .models import UserRole


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# -------------------------
# Requests
# -------------------------

class UserCreate(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=2)
    role: Optional[UserRole] = None


class UserLogin(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class WeatherRequest(ApiModel):
    city: str = Field(..., min_length=1)


# -------------------------
# Responses
# -------------------------

class UserOut(ApiModel):
    """User as returned by the API (never includes the password hash)."""
    id: str
    email: str
    name: str
    role: UserRole
    created_at: datetime
    updated_at: datetime


class UserSummary(ApiModel):
    id: str
    name: str
    email: str


class DeletedUser(ApiModel):
    id: str
    email: str
    name: str


class LoginUser(ApiModel):
    id: str
    email: str
    name: str
    role: UserRole


class LoginResult(ApiModel):
    user: LoginUser
    token: str


class WeatherReading(ApiModel):
    """
    Normalized current weather for one city.
    This is also the cached value, so it must round-trip through JSON.
    """
    city: str
    country: Optional[str] = None
    temperature: float
    humidity: Optional[int] = None
    description: Optional[str] = None
    icon: Optional[str] = None


class WeatherQueryOut(ApiModel):
    id: str
    city: str
    country: Optional[str] = None
    temperature: float
    humidity: Optional[int] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    user_id: str
    created_at: datetime
    user: UserSummary


class Pagination(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int


class HistoryPage(ApiModel):
    records: List[WeatherQueryOut]
    pagination: Pagination


def envelope(
    success: bool,
    data: Any = None,
    message: Optional[str] = None,
    error: Optional[str] = None,
) -> dict:
    """Build the {success, data?, message?, error?} body shared by every response."""
    body: dict = {"success": success}
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    elif isinstance(data, list):
        data = [d.model_dump(mode="json", by_alias=True) if isinstance(d, BaseModel) else d for d in data]
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    if error is not None:
        body["error"] = error
    return body
