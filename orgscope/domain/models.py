from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid4().hex


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(index=True)
    code: str | None = Field(default=None, index=True)
    parent_id: str | None = Field(default=None, foreign_key="organizations.id", index=True)
    is_deleted: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class OrganizationDetail(SQLModel, table=True):
    """Read projection of the organization forest with materialized paths."""

    __tablename__ = "organization_details"

    id: str = Field(primary_key=True)
    name: str
    code: str | None = None
    parent_id: str | None = Field(default=None, index=True)
    path: str = Field(index=True)
    level: int = Field(default=0)
    has_child: bool = Field(default=False)


class OrganizationAdministrator(SQLModel, table=True):
    __tablename__ = "organization_administrators"

    organization_id: str = Field(foreign_key="organizations.id", primary_key=True)
    user_id: str = Field(foreign_key="users.id", primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class OrganizationUser(SQLModel, table=True):
    __tablename__ = "organization_users"

    organization_id: str = Field(foreign_key="organizations.id", primary_key=True)
    user_id: str = Field(foreign_key="users.id", primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    username: str = Field(index=True, unique=True)
    name: str | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Role(SQLModel, table=True):
    __tablename__ = "roles"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(index=True)
    normalized_name: str = Field(index=True, unique=True)
    description: str | None = None
    version: int = Field(default=1)
    statement: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"

    user_id: str = Field(foreign_key="users.id", primary_key=True)
    role_id: str = Field(foreign_key="roles.id", primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class RoleAssignableRole(SQLModel, table=True):
    __tablename__ = "role_assignable_roles"

    role_id: str = Field(foreign_key="roles.id", primary_key=True)
    assignable_role_id: str = Field(foreign_key="roles.id", primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class OrganizationCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=256)
    code: str | None = PydanticField(default=None, max_length=64)
    parent_id: str | None = None


class OrganizationUpdate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=256)
    code: str | None = PydanticField(default=None, max_length=64)
    parent_id: str | None = None


class OrganizationRead(ORMReadModel):
    id: str
    name: str
    code: str | None
    parent_id: str | None
    path: str
    level: int
    has_child: bool


class AdministratorBindRequest(BaseModel):
    user_id: str = PydanticField(min_length=1)


class StatementModel(BaseModel):
    effect: str = PydanticField(min_length=1)
    action: list[str] = PydanticField(default_factory=list)
    resource: list[str] = PydanticField(default_factory=list)


class RoleCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=256)
    description: str | None = PydanticField(default=None, max_length=256)


class RoleUpdate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=256)
    description: str | None = PydanticField(default=None, max_length=256)


class RoleStatementUpdate(BaseModel):
    statement: list[StatementModel]


class RoleRead(ORMReadModel):
    id: str
    name: str
    description: str | None
    version: int
    statement: list[dict[str, Any]]


class RoleBasicRead(ORMReadModel):
    id: str
    name: str


class AssignableRolesBindRequest(BaseModel):
    assignable_role_ids: list[str] = PydanticField(default_factory=list)


class UserRolesUpdate(BaseModel):
    role_ids: list[str] = PydanticField(default_factory=list)


class UserOrganizationsUpdate(BaseModel):
    organization_ids: list[str] = PydanticField(default_factory=list)


class EnforceQuery(BaseModel):
    action: str = PydanticField(min_length=1, max_length=256)
    resource: str | None = PydanticField(default=None, max_length=256)
    policy_effect: str | None = PydanticField(default=None, max_length=256)
