"""Request bodies accepted by the public endpoints."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s\-']+$")


def sanitize(value: str) -> str:
    """Trim and drop angle brackets."""
    return value.strip().replace("<", "").replace(">", "")


def normalize_email(value: str) -> str:
    value = sanitize(value).lower()
    if len(value) > 254:
        raise ValueError("Email address is too long")
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Please provide a valid email address")
    return value


class ContactRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=320)
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)

    @field_validator("name", "subject", "message")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = sanitize(v)
        if not v:
            raise ValueError("All fields are required")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return normalize_email(v)


class SubscribeRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    name: str = Field(default="", max_length=200)
    captcha_token: str | None = Field(default=None, alias="captchaToken")

    model_config = {"populate_by_name": True}

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        v = sanitize(v)
        if not v:
            return v
        if len(v) > 100:
            raise ValueError("Name is too long")
        if not NAME_PATTERN.match(v):
            raise ValueError("Name contains invalid characters")
        return v


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1, max_length=1024)
    captcha_token: str | None = Field(default=None, alias="captchaToken")

    model_config = {"populate_by_name": True}

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return normalize_email(v)
