"""Create users, groups, canonical ACLs and versioned entities/links"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_core_schema"
down_revision = None
branch_labels = None
depends_on = None

JSON_DOCUMENT = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _versioned_columns(table: str) -> list:
    return [
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("is_latest", sa.Boolean(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("acl_id", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.Column("previous_version_id", sa.String(length=36), nullable=True),
        sa.CheckConstraint("version > 0", name=f"ck_{table}_version_positive"),
        sa.ForeignKeyConstraint(["acl_id"], ["acls.id"], name=f"fk_{table}_acl_id_acls"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], name=f"fk_{table}_created_by_users"),
        sa.ForeignKeyConstraint(
            ["previous_version_id"],
            [f"{table}.id"],
            name=f"fk_{table}_previous_version_id_{table}",
        ),
        sa.PrimaryKeyConstraint("id", name=f"pk_{table}"),
    ]


def _versioned_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_acl_id", table, ["acl_id"])
    op.create_index(f"ix_{table}_created_by", table, ["created_by"])
    op.create_index(f"ix_{table}_latest_deleted", table, ["is_latest", "is_deleted"])
    # A row can be superseded at most once.
    op.create_index(
        f"uq_{table}_previous_version_id",
        table,
        ["previous_version_id"],
        unique=True,
        postgresql_where=sa.text("previous_version_id IS NOT NULL"),
        sqlite_where=sa.text("previous_version_id IS NOT NULL"),
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default=sa.text("'user'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], name="fk_groups_created_by_users"),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.UniqueConstraint("name", name="uq_groups_name"),
    )
    op.create_index("ix_groups_created_by", "groups", ["created_by"])

    op.create_table(
        "group_members",
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("member_type", sa.String(length=10), nullable=False),
        sa.Column("member_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.CheckConstraint("member_type IN ('user', 'group')", name="ck_group_members_member_type"),
        sa.ForeignKeyConstraint(
            ["group_id"], ["groups.id"], name="fk_group_members_group_id_groups", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], name="fk_group_members_created_by_users"),
        sa.PrimaryKeyConstraint("group_id", "member_type", "member_id", name="pk_group_members"),
    )
    op.create_index("ix_group_members_member", "group_members", ["member_type", "member_id"])

    op.create_table(
        "acls",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("hash", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_acls"),
        sa.UniqueConstraint("hash", name="uq_acls_hash"),
    )

    op.create_table(
        "acl_entries",
        sa.Column("acl_id", sa.Integer(), nullable=False),
        sa.Column("principal_type", sa.String(length=10), nullable=False),
        sa.Column("principal_id", sa.String(length=36), nullable=False),
        sa.Column("permission", sa.String(length=10), nullable=False),
        sa.CheckConstraint("principal_type IN ('user', 'group')", name="ck_acl_entries_principal_type"),
        sa.CheckConstraint("permission IN ('read', 'write')", name="ck_acl_entries_permission"),
        sa.ForeignKeyConstraint(
            ["acl_id"], ["acls.id"], name="fk_acl_entries_acl_id_acls", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint(
            "acl_id", "principal_type", "principal_id", "permission", name="pk_acl_entries"
        ),
    )
    op.create_index("ix_acl_entries_principal", "acl_entries", ["principal_type", "principal_id"])

    op.create_table(
        "entities",
        *_versioned_columns("entities"),
        sa.Column("type_id", sa.String(length=255), nullable=False),
        sa.Column("properties", JSON_DOCUMENT, nullable=False),
    )
    _versioned_indexes("entities")
    op.create_index(
        "ix_entities_type_latest_deleted", "entities", ["type_id", "is_latest", "is_deleted"]
    )

    op.create_table(
        "links",
        *_versioned_columns("links"),
        sa.Column("type_id", sa.String(length=255), nullable=False),
        sa.Column("source_entity_id", sa.String(length=36), nullable=False),
        sa.Column("target_entity_id", sa.String(length=36), nullable=False),
        sa.Column("properties", JSON_DOCUMENT, nullable=False),
        sa.ForeignKeyConstraint(
            ["source_entity_id"], ["entities.id"], name="fk_links_source_entity_id_entities"
        ),
        sa.ForeignKeyConstraint(
            ["target_entity_id"], ["entities.id"], name="fk_links_target_entity_id_entities"
        ),
    )
    _versioned_indexes("links")
    op.create_index("ix_links_type_id", "links", ["type_id"])
    op.create_index(
        "ix_links_source_latest_deleted", "links", ["source_entity_id", "is_latest", "is_deleted"]
    )
    op.create_index(
        "ix_links_target_latest_deleted", "links", ["target_entity_id", "is_latest", "is_deleted"]
    )


def downgrade() -> None:
    op.drop_table("links")
    op.drop_table("entities")
    op.drop_index("ix_acl_entries_principal", table_name="acl_entries")
    op.drop_table("acl_entries")
    op.drop_table("acls")
    op.drop_index("ix_group_members_member", table_name="group_members")
    op.drop_table("group_members")
    op.drop_index("ix_groups_created_by", table_name="groups")
    op.drop_table("groups")
    op.drop_table("users")
