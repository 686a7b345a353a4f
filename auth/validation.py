"""
auth/validation.py -- Typed input models and the validation pipeline.

One Pydantic v2 model per use case. These models are the only way input
reaches AuthService, so the service never runs on a payload that failed
validation.

Rule set (enumerated, per field):
  required       -- field has no default
  min/max length -- Field(...) or StringConstraints(...) with min/max_length
  pattern        -- EMAIL_PATTERN, TOTP_CODE_PATTERN
  complexity     -- _check_password_strength: length + upper/lower/digit/symbol
  equals-field   -- confirmPassword must equal password / newPassword
  boolean-true   -- termsAccepted must be exactly true

Wire names are camelCase (confirmPassword, termsAccepted); snake_case is
accepted too. Every violation is collected -- not just the first -- and
field_errors() flattens Pydantic's error list into {field: message}. The REST
binding reuses field_errors() for FastAPI's RequestValidationError so both
paths produce the same map.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Iterable

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

from auth.errors import ValidationFailed

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
# [0-9] rather than \d: \d also matches non-ASCII digits.
TOTP_CODE_PATTERN = r"^[0-9]{6}$"

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 72  # bcrypt truncates beyond 72 bytes

_MESSAGES = {
    "missing": "{label} is required",
    "string_type": "{label} must be a string",
    "bool_type": "{label} must be a boolean",
    "bool_parsing": "{label} must be a boolean",
    "string_too_short": "{label} must be at least {min_length} characters long",
    "string_too_long": "{label} cannot exceed {max_length} characters",
    # Generic length errors, raised when a length check runs after a validator.
    "too_short": "{label} must be at least {min_length} characters long",
    "too_long": "{label} cannot exceed {max_length} characters",
    "extra_forbidden": "{label} is not allowed",
}

_PATTERN_MESSAGES = {
    EMAIL_PATTERN: "Please provide a valid email address",
    TOTP_CODE_PATTERN: "Authentication code must be exactly 6 digits",
}

_LABELS = {
    "email": "Email",
    "password": "Password",
    "confirmPassword": "Password confirmation",
    "firstName": "First name",
    "lastName": "Last name",
    "termsAccepted": "Terms acceptance",
    "token": "Token",
    "currentPassword": "Current password",
    "newPassword": "New password",
    "code": "Authentication code",
}


# ---------------------------------------------------------------------------
# Shared rules
# ---------------------------------------------------------------------------


def _check_password_strength(value: str, label: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_LENGTH:
        raise PydanticCustomError(
            "password_too_long", "{label} cannot exceed {max} bytes", {"label": label, "max": PASSWORD_MAX_LENGTH}
        )
    missing = []
    if not re.search(r"[A-Z]", value):
        missing.append("one uppercase letter")
    if not re.search(r"[a-z]", value):
        missing.append("one lowercase letter")
    if not re.search(r"[0-9]", value):
        missing.append("one number")
    if not re.search(r"[^A-Za-z0-9]", value):
        missing.append("one special character")
    if missing:
        raise PydanticCustomError(
            "password_strength",
            "{label} must contain at least " + ", ".join(missing),
            {"label": label},
        )
    return value


# Annotated field types. StringConstraints strips (and lower-cases) before the
# length and pattern checks, so " A@B.com " is checked as "a@b.com" and the
# errors keep their string_* types.
_Email = Annotated[
    str, StringConstraints(strip_whitespace=True, to_lower=True, max_length=254, pattern=EMAIL_PATTERN)
]
_Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=50)]
_Token = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=256)]


def _check_equals(value: str, info: ValidationInfo, other: str, message: str) -> str:
    # If `other` failed its own validation it is absent from info.data;
    # its error is already reported, so skip the comparison.
    if other in info.data and value != info.data[other]:
        raise PydanticCustomError("fields_mismatch", message)
    return value


class _Input(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Use-case inputs
# ---------------------------------------------------------------------------


class RegisterInput(_Input):
    email: _Email
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    confirm_password: str
    first_name: _Name
    last_name: _Name
    terms_accepted: bool

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value, "Password")

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, value: str, info: ValidationInfo) -> str:
        return _check_equals(value, info, "password", "Passwords do not match")

    @field_validator("terms_accepted")
    @classmethod
    def terms_must_be_accepted(cls, value: bool) -> bool:
        if value is not True:
            raise PydanticCustomError("terms_not_accepted", "You must accept the terms and conditions")
        return value


class LoginInput(_Input):
    email: _Email
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)
    remember: bool = False


class ForgotPasswordInput(_Input):
    email: _Email


class VerifyEmailInput(_Input):
    token: _Token


class ResetPasswordInput(_Input):
    token: _Token
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    confirm_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value, "New password")

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, value: str, info: ValidationInfo) -> str:
        return _check_equals(value, info, "new_password", "Passwords do not match")


class ChangePasswordInput(_Input):
    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    confirm_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value, "New password")

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, value: str, info: ValidationInfo) -> str:
        return _check_equals(value, info, "new_password", "New passwords do not match")


class TotpCodeInput(_Input):
    code: str = Field(pattern=TOTP_CODE_PATTERN)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def field_errors(errors: Iterable[dict], skip_prefix: tuple[str, ...] = ()) -> dict[str, str]:
    """Flatten Pydantic error dicts into {field: message}.

    The first message per field wins. `skip_prefix` drops location parts such
    as FastAPI's leading "body".
    """
    result: dict[str, str] = {}
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in skip_prefix]
        field = ".".join(loc) or "__root__"
        if field not in result:
            result[field] = _message_for(field, err)
    return result


def validate(model: type[_Input], payload: Any) -> _Input:
    """Validate `payload` against `model`, raising ValidationFailed with every violation."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailed(field_errors(exc.errors())) from None


def _message_for(field: str, err: dict) -> str:
    err_type = err.get("type", "")
    ctx = err.get("ctx") or {}
    label = _LABELS.get(field.split(".")[-1], field)
    if err_type == "string_pattern_mismatch":
        return _PATTERN_MESSAGES.get(ctx.get("pattern"), f"{label} has an invalid format")
    template = _MESSAGES.get(err_type)
    if template is not None:
        return template.format(label=label, **ctx)
    return err.get("msg", f"{label} is invalid")
