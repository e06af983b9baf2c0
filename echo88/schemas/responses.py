from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserOut(CamelModel):
    id: str
    email: str
    username: str
    full_name: str
    avatar: Optional[str] = Field(None, validation_alias="avatar_url")
    email_verified: bool


class ProfileOut(UserOut):
    bio: Optional[str] = None
    is_private: bool = False
    notifications_enabled: bool = True
    created_at: datetime


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class LoginResponse(CamelModel):
    success: bool = True
    user: UserOut
    session_id: str


class SignupResponse(CamelModel):
    success: bool = True
    message: str
    user: UserOut
    email_sent: bool


class MeResponse(CamelModel):
    success: bool = True
    user: ProfileOut


class LogoutAllResponse(CamelModel):
    success: bool = True
    message: str
    revoked: int


class SessionOut(CamelModel):
    id: str
    device_id: str
    device: str
    browser: str
    location: Optional[str] = None
    ip: str
    created_at: datetime
    last_active_at: datetime
    is_current: bool


class SessionsResponse(CamelModel):
    success: bool = True
    sessions: List[SessionOut]
    total: int


class FieldAvailability(CamelModel):
    available: bool
    message: str


class AvailabilityResponse(CamelModel):
    success: bool = True
    email: Optional[FieldAvailability] = None
    username: Optional[FieldAvailability] = None


class UserEmailResponse(CamelModel):
    success: bool = True
    email: str
    email_verified: bool


class UploadUrlResponse(CamelModel):
    success: bool = True
    upload_url: str
    file_url: str
    key: str
    content_type: str
    expires_in: int


class FieldError(BaseModel):
    field: str
    location: str
    message: str


class ErrorResponse(CamelModel):
    success: bool = False
    error: str
    errors: Optional[List[str]] = None
    details: Optional[List[FieldError]] = None
    requires_verification: Optional[bool] = None
    user_id: Optional[str] = None
    retry_after: Optional[int] = None
    guidance: Optional[str] = None
