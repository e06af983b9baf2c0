from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from echo88.services.accounts import is_valid_email, username_error


ALLOWED_AVATAR_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _account_email(value: str) -> str:
    if not is_valid_email(value):
        raise ValueError("Invalid email address")
    return value.lower()


# One rule for every endpoint that takes an account address.
AccountEmail = Annotated[EmailStr, BeforeValidator(_strip), AfterValidator(_account_email)]

_account_email_adapter = TypeAdapter(AccountEmail)


def normalize_account_email(value: str) -> Optional[str]:
    """Normalized address, or None when signup would reject it."""
    try:
        return _account_email_adapter.validate_python(value)
    except ValidationError:
        return None


class CamelRequest(BaseModel):
    """Request body accepting both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(CamelRequest):
    email_or_username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=256)

    model_config = ConfigDict(
        json_schema_extra={"example": {"emailOrUsername": "ana@mail.com", "password": "Str0ng!pass"}}
    )


class SignupRequest(CamelRequest):
    email: AccountEmail
    username: str = Field(..., min_length=1, max_length=64)
    full_name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=256)
    avatar: Optional[str] = Field(None, max_length=512)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        error = username_error(v)
        if error:
            raise ValueError(error)
        return v.lower()


class AvailabilityRequest(CamelRequest):
    email: Optional[str] = Field(None, max_length=255)
    username: Optional[str] = Field(None, max_length=64)


class EmailRequest(CamelRequest):
    email: AccountEmail


class ResetPasswordRequest(CamelRequest):
    token: str = Field(..., min_length=1, max_length=256)
    new_password: str = Field(..., min_length=1, max_length=256)


class VerifyEmailRequest(CamelRequest):
    token: str = Field(..., min_length=1, max_length=256)


class AvatarUploadRequest(CamelRequest):
    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str
    # only honoured during the signup window, when there is no session yet
    user_id: Optional[str] = Field(None, max_length=36)

    @field_validator("content_type")
    @classmethod
    def validate_content_type(cls, v: str) -> str:
        v = v.lower()
        if v not in ALLOWED_AVATAR_TYPES:
            raise ValueError(f"Content type must be one of: {', '.join(sorted(ALLOWED_AVATAR_TYPES))}")
        return v


class UpdateAvatarRequest(CamelRequest):
    avatar_url: str = Field(..., min_length=1, max_length=512)

    @field_validator("avatar_url")
    @classmethod
    def validate_avatar_url(cls, v: str) -> str:
        if not (v.startswith("https://") or v.startswith("http://")):
            raise ValueError("Avatar URL must be an http(s) URL")
        return v


class SignupAvatarRequest(UpdateAvatarRequest):
    user_id: str = Field(..., min_length=1, max_length=36)

