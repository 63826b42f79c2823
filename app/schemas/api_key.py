from typing import Literal

from pydantic import BaseModel, Field


Role = Literal["admin", "manager", "courier"]


class ApiKeyCreate(BaseModel):
    subject: str = Field(min_length=1, max_length=120)
    role: Role


class ApiKeyIssuedOut(BaseModel):
    id: str
    subject: str
    role: str
    key_prefix: str
    plain_key: str


class ApiKeyOut(BaseModel):
    id: str
    subject: str
    role: str
    key_prefix: str
    is_active: bool
