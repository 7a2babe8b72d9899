"""Pydantic schemas for user accounts.

Input schemas (UserCreate, UserUpdate) are the validation step that runs
before anything is written. Output schemas are projections: UserRead
never carries the credential secret, UserDefaultView (used for export
and backup) does.

The form hints on UserEdit's fields (title, order, editor) are what a
UI renders the account form from; editable_fields() lists them in
display order.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, EmailStr, Field, StringConstraints

from codehub.config import settings


def _check_login_name(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("login name must not be empty")
    if not re.match(settings.login_name_pattern, value):
        raise ValueError(
            "login name may only contain letters, digits, '.', '-' and '_', "
            "and must start with a letter or digit"
        )
    return value


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


ShortText = Annotated[str, StringConstraints(max_length=255)]
LoginName = Annotated[ShortText, AfterValidator(_check_login_name)]
FullName = Annotated[Optional[ShortText], AfterValidator(_blank_to_none)]


# ─── Input ──────────────────────────────────────────────


class UserEdit(BaseModel):
    """The account form."""

    name: LoginName = Field(
        ...,
        title="Login Name",
        json_schema_extra={"order": 100},
    )
    password: str = Field(
        ...,
        title="Password",
        min_length=1,
        json_schema_extra={
            "order": 150,
            "editor": "password",
            "confirmative": True,
            "autocomplete": "new-password",
        },
    )
    full_name: FullName = Field(
        None,
        title="Full Name",
        json_schema_extra={"order": 200},
    )
    email: EmailStr = Field(..., title="Email", json_schema_extra={"order": 300})


class UserCreate(UserEdit):
    pass


class UserUpdate(BaseModel):
    """A partial edit. Fields left unset keep their stored value."""

    name: Optional[LoginName] = None
    password: Optional[str] = Field(None, min_length=1)
    full_name: FullName = None
    email: Optional[EmailStr] = None


# ─── Output ─────────────────────────────────────────────


class UserRead(BaseModel):
    id: int
    name: str
    full_name: Optional[str] = None
    display_name: str
    email: str
    version: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UserDefaultView(UserRead):
    """Full projection including the stored credential secret."""

    password: str


# ─── Form hints ─────────────────────────────────────────


@dataclass(frozen=True)
class FieldHint:
    name: str
    label: str
    order: int
    editor: str = "text"
    confirmative: bool = False
    autocomplete: Optional[str] = None


def editable_fields(model: type[BaseModel] = UserEdit) -> list[FieldHint]:
    """Form fields of model, in display order."""
    hints = []
    for name, info in model.model_fields.items():
        extra = info.json_schema_extra or {}
        hints.append(
            FieldHint(
                name=name,
                label=info.title or name.replace("_", " ").title(),
                order=extra.get("order", 0),
                editor=extra.get("editor", "text"),
                confirmative=extra.get("confirmative", False),
                autocomplete=extra.get("autocomplete"),
            )
        )
    return sorted(hints, key=lambda hint: hint.order)
