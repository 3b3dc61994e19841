# -*- coding: utf-8 -*-
"""001 Schema Engine Baseline

Revision ID: 001_schema_engine_baseline
Revises:
Create Date: 2026-10-17

Schema engine tables
- attribute_definitions: 속성 정의 (테넌트 내 활성 이름 유일)
- assignment_records: 클래스-속성 할당 (활성 (class, attribute) 유일, 활성 정렬 위치 유일)
- evolution_records: 스키마 변경 이력 (append-only)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_schema_engine_baseline'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')
ACTIVE_ONLY = sa.text("status = 'active'")


def upgrade() -> None:
    # ============================================
    # 1. attribute_definitions
    # ============================================
    op.create_table(
        'attribute_definitions',
        sa.Column('attribute_id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(63), nullable=False),
        sa.Column('data_type', sa.String(20), nullable=False),
        sa.Column('base_rules', JSON_TYPE, nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('attribute_id'),
        sa.CheckConstraint(
            "data_type IN ('string', 'integer', 'decimal', 'boolean', "
            "'date', 'datetime', 'structured', 'reference')",
            name='ck_attribute_definitions_data_type'
        ),
        sa.CheckConstraint(
            "status IN ('active', 'deactivated')",
            name='ck_attribute_definitions_status'
        ),
    )
    op.create_index('ix_attribute_definitions_tenant_id', 'attribute_definitions', ['tenant_id'])
    op.create_index(
        'uq_attribute_definitions_tenant_name_active',
        'attribute_definitions',
        ['tenant_id', 'name'],
        unique=True,
        postgresql_where=ACTIVE_ONLY,
        sqlite_where=ACTIVE_ONLY,
    )

    # ============================================
    # 2. assignment_records
    # ============================================
    op.create_table(
        'assignment_records',
        sa.Column('assignment_id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('class_id', sa.Uuid(), nullable=False),
        sa.Column('attribute_id', sa.Uuid(), nullable=False),
        sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sort_position', sa.Integer(), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('override_rules', JSON_TYPE, nullable=False),
        sa.Column('default_value', JSON_TYPE, nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('assignment_id'),
        sa.ForeignKeyConstraint(['attribute_id'], ['attribute_definitions.attribute_id']),
        sa.CheckConstraint(
            "status IN ('active', 'deactivated')",
            name='ck_assignment_records_status'
        ),
        sa.CheckConstraint('sort_position >= 0', name='ck_assignment_records_sort_position'),
    )
    op.create_index(
        'uq_assignment_records_class_attribute_active',
        'assignment_records',
        ['tenant_id', 'class_id', 'attribute_id'],
        unique=True,
        postgresql_where=ACTIVE_ONLY,
        sqlite_where=ACTIVE_ONLY,
    )
    op.create_index(
        'uq_assignment_records_class_sort_active',
        'assignment_records',
        ['tenant_id', 'class_id', 'sort_position'],
        unique=True,
        postgresql_where=ACTIVE_ONLY,
        sqlite_where=ACTIVE_ONLY,
    )
    # "클래스 X의 활성 할당을 정렬 순서로" - O(log n + k)
    op.create_index(
        'ix_assignment_records_class_status_sort',
        'assignment_records',
        ['tenant_id', 'class_id', 'status', 'sort_position'],
    )
    op.create_index(
        'ix_assignment_records_attribute',
        'assignment_records',
        ['tenant_id', 'attribute_id'],
    )

    # ============================================
    # 3. evolution_records
    # ============================================
    op.create_table(
        'evolution_records',
        sa.Column('evolution_id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('operation', sa.String(20), nullable=False),
        sa.Column('entity_version', sa.Integer(), nullable=False),
        sa.Column('old_value', JSON_TYPE, nullable=True),
        sa.Column('new_value', JSON_TYPE, nullable=True),
        sa.Column('safety_level', sa.String(20), nullable=False),
        sa.Column('forced', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('instance_counts', JSON_TYPE, nullable=False),
        sa.Column('impact_report', JSON_TYPE, nullable=True),
        sa.Column('rollback_data', JSON_TYPE, nullable=True),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('evolution_id'),
        sa.CheckConstraint(
            "entity_type IN ('attribute', 'assignment')",
            name='ck_evolution_records_entity_type'
        ),
        sa.CheckConstraint(
            "safety_level IN ('safe', 'warning', 'breaking')",
            name='ck_evolution_records_safety_level'
        ),
    )
    op.create_index('ix_evolution_records_tenant_id', 'evolution_records', ['tenant_id'])
    op.create_index(
        'ix_evolution_records_entity',
        'evolution_records',
        ['tenant_id', 'entity_id', 'created_at'],
    )


def downgrade() -> None:
    op.drop_index('ix_evolution_records_entity', table_name='evolution_records')
    op.drop_index('ix_evolution_records_tenant_id', table_name='evolution_records')
    op.drop_table('evolution_records')

    op.drop_index('ix_assignment_records_attribute', table_name='assignment_records')
    op.drop_index('ix_assignment_records_class_status_sort', table_name='assignment_records')
    op.drop_index('uq_assignment_records_class_sort_active', table_name='assignment_records')
    op.drop_index('uq_assignment_records_class_attribute_active', table_name='assignment_records')
    op.drop_table('assignment_records')

    op.drop_index('uq_attribute_definitions_tenant_name_active', table_name='attribute_definitions')
    op.drop_index('ix_attribute_definitions_tenant_id', table_name='attribute_definitions')
    op.drop_table('attribute_definitions')
