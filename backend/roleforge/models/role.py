from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, Integer, ForeignKey, Index, UniqueConstraint, func, text
from sqlalchemy.orm import Mapped, mapped_column

from roleforge.database import Base, JSONType


class RoleDefinition(Base):
    __tablename__ = "role_definitions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "role_type", name="uq_role_definitions_tenant_role"),
        # NULL tenant ids never collide in the constraint above
        Index(
            "uq_role_definitions_system_role", "role_type", unique=True,
            postgresql_where=text("tenant_id IS NULL"), sqlite_where=text("tenant_id IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    role_type: Mapped[str] = mapped_column(String(100), index=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    level: Mapped[int] = mapped_column(Integer)  # 0 = highest authority
    parent_role_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False)
    # null = system role, visible to every tenant
    tenant_id: Mapped[str | None] = mapped_column(ForeignKey("tenants.id"), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Every UPDATE of the row checks and increments `version`
    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}


class PermissionGrant(Base):
    __tablename__ = "permission_grants"
    __table_args__ = (
        UniqueConstraint("role_definition_id", "permission_id", name="uq_permission_grants_role_permission"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    role_definition_id: Mapped[int] = mapped_column(
        ForeignKey("role_definitions.id", ondelete="CASCADE"), index=True,
    )
    permission_id: Mapped[str] = mapped_column(String(100))
    granted: Mapped[bool] = mapped_column(Boolean, default=True)
    scope: Mapped[str] = mapped_column(String(10), default="all")  # "all" | "tenant" | "own"
    tenant_ids: Mapped[list] = mapped_column(JSONType, default=list)
    field_restrictions: Mapped[list] = mapped_column(JSONType, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
