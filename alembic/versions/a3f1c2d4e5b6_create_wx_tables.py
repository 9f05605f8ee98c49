"""create wx tables

Revision ID: a3f1c2d4e5b6
Revises:
Create Date: 2026-10-18 10:12:41.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a3f1c2d4e5b6'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('wx_robot_configs',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('address', sa.String(length=255), nullable=False, comment='机器人地址'),
    sa.Column('admin_key', sa.String(length=255), nullable=False, comment='管理密钥'),
    sa.Column('owner_id', sa.BigInteger(), nullable=False, comment='所属公司ID'),
    sa.Column('description', sa.String(length=500), nullable=True, comment='文本描述'),
    sa.Column('admin_users', sa.Text(), nullable=True, comment='管理员用户列表，用逗号分隔'),
    sa.Column('create_time', sa.DateTime(), nullable=False, comment='创建时间'),
    sa.Column('update_time', sa.DateTime(), nullable=False, comment='修改时间'),
    sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('wx_robot_configs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_wx_robot_configs_owner_id'), ['owner_id'], unique=False)

    op.create_table('wx_user_logins',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('robot_id', sa.Integer(), nullable=False, comment='关联的机器人ID'),
    sa.Column('token', sa.String(length=500), nullable=True, comment='登录令牌'),
    sa.Column('wx_id', sa.String(length=100), nullable=True, comment='微信ID'),
    sa.Column('nick_name', sa.String(length=100), nullable=True, comment='微信昵称'),
    sa.Column('extension_time', sa.DateTime(), nullable=True, comment='延期时间'),
    sa.Column('expiration_time', sa.DateTime(), nullable=True, comment='过期时间'),
    sa.Column('has_security_risk', sa.Boolean(), nullable=False, comment='是否有安全风险'),
    sa.Column('status', sa.Integer(), nullable=False, comment='状态 1正常 2风控 3需要重新登录'),
    sa.Column('is_initialized', sa.Boolean(), nullable=False, comment='是否初始化完成'),
    sa.Column('is_message_bot', sa.Boolean(), nullable=False, comment='是否是消息机器人'),
    sa.Column('create_time', sa.DateTime(), nullable=False, comment='创建时间'),
    sa.Column('update_time', sa.DateTime(), nullable=False, comment='修改时间'),
    sa.ForeignKeyConstraint(['robot_id'], ['wx_robot_configs.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('wx_user_logins', schema=None) as batch_op:
        batch_op.create_index('idx_robot_wx', ['robot_id', 'wx_id'], unique=False)
        batch_op.create_index('idx_robot_token', ['robot_id', 'token'], unique=False)
        batch_op.create_index('idx_init_status', ['is_initialized', 'status'], unique=False)
        batch_op.create_index('idx_status_msgbot_risk', ['status', 'is_message_bot', 'has_security_risk'], unique=False)
        batch_op.create_index(batch_op.f('ix_wx_user_logins_wx_id'), ['wx_id'], unique=False)

    op.create_table('wx_groups',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('wx_id', sa.String(length=100), nullable=False, comment='微信ID'),
    sa.Column('group_id', sa.String(length=100), nullable=False, comment='群组ID'),
    sa.Column('group_nick_name', sa.String(length=200), nullable=True, comment='群组昵称'),
    sa.Column('create_time', sa.DateTime(), nullable=False, comment='创建时间'),
    sa.Column('update_time', sa.DateTime(), nullable=False, comment='修改时间'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('wx_id', 'group_id', name='uk_wx_group')
    )
    with op.batch_alter_table('wx_groups', schema=None) as batch_op:
        batch_op.create_index('idx_group_wx', ['group_id', 'wx_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_wx_groups_wx_id'), ['wx_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_wx_groups_group_nick_name'), ['group_nick_name'], unique=False)

    op.create_table('wx_bill_info',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('group_name', sa.String(length=50), nullable=False, comment='群组名称'),
    sa.Column('group_id', sa.String(length=50), nullable=False, comment='群组Id'),
    sa.Column('dollar', sa.String(length=20), nullable=True, comment='金额(外币)'),
    sa.Column('rate', sa.String(length=20), nullable=True, comment='汇率'),
    sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=True, comment='金额(RMB)'),
    sa.Column('remark', sa.Text(), nullable=True, comment='备注'),
    sa.Column('operator', sa.String(length=20), nullable=True, comment='操作人名称'),
    sa.Column('msg_time', sa.BigInteger(), nullable=True, comment='账单时间'),
    sa.Column('status', sa.String(length=2), nullable=True, comment='清账状态(0 为未清账, 1 为已清账)'),
    sa.Column('owner_id', sa.BigInteger(), nullable=False, comment='所属公司ID'),
    sa.Column('create_time', sa.DateTime(), nullable=False, comment='创建时间'),
    sa.Column('update_time', sa.DateTime(), nullable=False, comment='修改时间'),
    sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('wx_bill_info', schema=None) as batch_op:
        batch_op.create_index('idx_owner_group', ['owner_id', 'group_id'], unique=False)
        batch_op.create_index('idx_owner_status', ['owner_id', 'status'], unique=False)
        batch_op.create_index('idx_owner_msgtime', ['owner_id', 'msg_time'], unique=False)
        batch_op.create_index(batch_op.f('ix_wx_bill_info_group_name'), ['group_name'], unique=False)
        batch_op.create_index(batch_op.f('ix_wx_bill_info_msg_time'), ['msg_time'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('wx_bill_info')
    op.drop_table('wx_groups')
    op.drop_table('wx_user_logins')
    op.drop_table('wx_robot_configs')
