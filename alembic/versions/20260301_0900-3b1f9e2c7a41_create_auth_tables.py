"""create_auth_tables

Revision ID: 3b1f9e2c7a41
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b1f9e2c7a41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Person names
    op.create_table(
        'given_names',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('value', sa.String(length=100), nullable=False, comment='规范化后的名'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('value'),
    )
    op.create_table(
        'surnames',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('value', sa.String(length=100), nullable=False, comment='规范化后的姓'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('value'),
    )

    # Users
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('login_hmac', sa.String(length=64), nullable=False, comment='登录名HMAC'),
        sa.Column('login_encrypted', sa.Text(), nullable=False, comment='登录名密文信封'),
        sa.Column('login_masked', sa.String(length=100), nullable=False, comment='脱敏登录名'),
        sa.Column('email_hmac', sa.String(length=64), nullable=False, comment='邮箱HMAC'),
        sa.Column('email_encrypted', sa.Text(), nullable=False, comment='邮箱密文信封'),
        sa.Column('email_masked', sa.String(length=255), nullable=False, comment='脱敏邮箱'),
        sa.Column('key_version', sa.Integer(), nullable=False, comment='加密字段使用的密钥版本'),
        sa.Column('password_hash', sa.String(length=255), nullable=False, comment='密码哈希'),
        sa.Column('must_change_password', sa.Boolean(), nullable=False, comment='下次登录前必须修改密码'),
        sa.Column('password_changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('password_changed_by', sa.String(length=36), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, comment='是否激活'),
        sa.Column('is_locked', sa.Boolean(), nullable=False, comment='是否锁定'),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True, comment='锁定到期时间'),
        sa.Column('failed_login_attempts', sa.Integer(), nullable=False, comment='连续登录失败次数'),
        sa.Column('last_failed_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True, comment='最后登录时间'),
        sa.Column('organizational_unit_id', sa.String(length=36), nullable=True, comment='组织单元ID'),
        sa.Column('sex_id', sa.String(length=36), nullable=True),
        sa.Column('first_name_id', sa.String(length=36), nullable=True),
        sa.Column('surname_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='更新时间'),
        sa.ForeignKeyConstraint(['first_name_id'], ['given_names.id']),
        sa.ForeignKeyConstraint(['surname_id'], ['surnames.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_login_hmac', 'users', ['login_hmac'], unique=True)
    op.create_index('ix_users_email_hmac', 'users', ['email_hmac'], unique=True)
    op.create_index('ix_users_organizational_unit_id', 'users', ['organizational_unit_id'], unique=False)

    op.create_table(
        'password_history',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('changed_by', sa.String(length=36), nullable=True, comment='修改人'),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_password_history_user_changed', 'password_history', ['user_id', 'changed_at'], unique=False)

    # Tokens
    op.create_table(
        'refresh_tokens',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False, comment='用户ID'),
        sa.Column('token_hash', sa.String(length=160), nullable=False, comment='令牌加盐SHA-256哈希'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, comment='过期时间'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refresh_tokens_user_id', 'refresh_tokens', ['user_id'], unique=False)
    op.create_index('ix_refresh_tokens_user_expires', 'refresh_tokens', ['user_id', 'expires_at'], unique=False)

    op.create_table(
        'blacklisted_tokens',
        sa.Column('jti', sa.String(length=36), nullable=False, comment='原令牌ID'),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, comment='原令牌过期时间'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('jti'),
    )
    op.create_index('ix_blacklisted_tokens_user_id', 'blacklisted_tokens', ['user_id'], unique=False)
    op.create_index('ix_blacklisted_tokens_expires_at', 'blacklisted_tokens', ['expires_at'], unique=False)

    # Roles and permissions
    op.create_table(
        'roles',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False, comment='角色名'),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )
    op.create_table(
        'role_permissions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('role_id', sa.String(length=36), nullable=False),
        sa.Column('permission', sa.String(length=100), nullable=False, comment='权限标识（精确匹配）'),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('role_id', 'permission', name='uq_role_permissions_role_permission'),
    )
    op.create_index('ix_role_permissions_role_id', 'role_permissions', ['role_id'], unique=False)

    op.create_table(
        'user_roles',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('role_id', sa.String(length=36), nullable=False),
        sa.Column('assigned_by', sa.String(length=36), nullable=False, comment='分配角色的管理员'),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_roles_user_role'),
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'], unique=False)

    op.create_table(
        'user_permissions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('permission', sa.String(length=100), nullable=False),
        sa.Column('allowed', sa.Boolean(), nullable=False, comment='True 为允许，False 为拒绝'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'permission', name='uq_user_permissions_user_permission'),
    )
    op.create_index('ix_user_permissions_user_id', 'user_permissions', ['user_id'], unique=False)

    # Audit log (append only)
    op.create_table(
        'operation_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=True, comment='操作者，匿名或失败尝试为空'),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('action_details', sa.Text(), nullable=False),
        sa.Column('entity_type', sa.String(length=100), nullable=False),
        sa.Column('entity_id', sa.String(length=36), nullable=True),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('retention_until', sa.DateTime(timezone=True), nullable=False, comment='保留期限'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_operation_logs_user_id', 'operation_logs', ['user_id'], unique=False)
    op.create_index('ix_operation_logs_entity', 'operation_logs', ['entity_type', 'entity_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_operation_logs_entity', table_name='operation_logs')
    op.drop_index('ix_operation_logs_user_id', table_name='operation_logs')
    op.drop_table('operation_logs')
    op.drop_index('ix_user_permissions_user_id', table_name='user_permissions')
    op.drop_table('user_permissions')
    op.drop_index('ix_user_roles_user_id', table_name='user_roles')
    op.drop_table('user_roles')
    op.drop_index('ix_role_permissions_role_id', table_name='role_permissions')
    op.drop_table('role_permissions')
    op.drop_table('roles')
    op.drop_index('ix_blacklisted_tokens_expires_at', table_name='blacklisted_tokens')
    op.drop_index('ix_blacklisted_tokens_user_id', table_name='blacklisted_tokens')
    op.drop_table('blacklisted_tokens')
    op.drop_index('ix_refresh_tokens_user_expires', table_name='refresh_tokens')
    op.drop_index('ix_refresh_tokens_user_id', table_name='refresh_tokens')
    op.drop_table('refresh_tokens')
    op.drop_index('ix_password_history_user_changed', table_name='password_history')
    op.drop_table('password_history')
    op.drop_index('ix_users_organizational_unit_id', table_name='users')
    op.drop_index('ix_users_email_hmac', table_name='users')
    op.drop_index('ix_users_login_hmac', table_name='users')
    op.drop_table('users')
    op.drop_table('surnames')
    op.drop_table('given_names')
