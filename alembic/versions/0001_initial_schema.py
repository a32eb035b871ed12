from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as psql

# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'users',
        sa.Column('id', psql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text("(now() at time zone 'utc')"), nullable=False),
    )
    op.create_unique_constraint('uq_users_email', 'users', ['email'])

    op.create_table(
        'profiles',
        sa.Column('id', psql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True, nullable=False),
        sa.Column('username', sa.Text(), nullable=True),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('avatar_path', sa.Text(), nullable=True),
        sa.Column('is_pro', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text("(now() at time zone 'utc')"), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text("(now() at time zone 'utc')"), nullable=False),
        sa.CheckConstraint("username is null or trim(username) <> ''", name='profiles_username_not_blank'),
        sa.CheckConstraint("username is null or username = lower(username)", name='profiles_username_lowercase'),
    )
    op.execute(
        "create unique index profiles_username_unique_ci_idx "
        "on profiles (lower(username)) where username is not null"
    )

    op.create_table(
        'vehicles',
        sa.Column('id', psql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('profile_id', psql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('make', sa.Text(), nullable=True),
        sa.Column('model', sa.Text(), nullable=True),
        sa.Column('trim', sa.Text(), nullable=True),
        sa.Column('hero_image_path', sa.Text(), nullable=True),
        sa.Column('is_public', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text("(now() at time zone 'utc')"), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text("(now() at time zone 'utc')"), nullable=False),
    )
    op.create_index('vehicles_profile_id_idx', 'vehicles', ['profile_id'])
    op.create_index('vehicles_profile_sort_idx', 'vehicles', ['profile_id', 'sort_order', 'created_at'])

    op.create_table(
        'mods',
        sa.Column('id', psql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('vehicle_id', psql.UUID(as_uuid=True), sa.ForeignKey('vehicles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('category', sa.Text(), nullable=True),
        sa.Column('cost_cents', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('installed_on', sa.Date(), nullable=True),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text("(now() at time zone 'utc')"), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text("(now() at time zone 'utc')"), nullable=False),
        sa.CheckConstraint('cost_cents is null or cost_cents >= 0', name='mods_cost_cents_non_negative'),
    )
    op.create_index('mods_vehicle_id_idx', 'mods', ['vehicle_id'])
    op.create_index('mods_vehicle_sort_idx', 'mods', ['vehicle_id', 'sort_order', 'created_at'])

    op.create_table(
        'images',
        sa.Column('id', psql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('profile_id', psql.UUID(as_uuid=True), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('vehicle_id', psql.UUID(as_uuid=True), sa.ForeignKey('vehicles.id', ondelete='CASCADE'), nullable=True),
        sa.Column('mod_id', psql.UUID(as_uuid=True), sa.ForeignKey('mods.id', ondelete='CASCADE'), nullable=True),
        sa.Column('storage_bucket', sa.Text(), server_default='mygarage', nullable=False),
        sa.Column('storage_path', sa.Text(), nullable=False),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text("(now() at time zone 'utc')"), nullable=False),
        sa.CheckConstraint(
            '(vehicle_id is not null and mod_id is null) or (vehicle_id is null and mod_id is not null)',
            name='images_exactly_one_parent',
        ),
        sa.CheckConstraint("trim(storage_path) <> ''", name='images_storage_path_not_blank'),
    )
    op.create_index('images_profile_id_idx', 'images', ['profile_id'])
    op.create_index('images_vehicle_sort_idx', 'images', ['vehicle_id', 'sort_order', 'created_at'])
    op.create_index('images_mod_sort_idx', 'images', ['mod_id', 'sort_order', 'created_at'])

    op.create_table(
        'rate_limit_buckets',
        sa.Column('bucket_key', sa.Text(), primary_key=True, nullable=False),
        sa.Column('window_started_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('window_seconds', sa.Integer(), nullable=False),
        sa.Column('request_count', sa.Integer(), nullable=False),
        sa.Column('window_ends_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text("(now() at time zone 'utc')"), nullable=False),
        sa.CheckConstraint('window_seconds > 0', name='rate_limit_buckets_window_seconds_positive'),
        sa.CheckConstraint('request_count > 0', name='rate_limit_buckets_request_count_positive'),
        sa.CheckConstraint('window_ends_at > window_started_at', name='rate_limit_buckets_window_order'),
        sa.CheckConstraint('expires_at >= window_ends_at', name='rate_limit_buckets_expiry_after_window'),
    )
    op.create_index('rate_limit_buckets_expires_at_idx', 'rate_limit_buckets', ['expires_at'])

    op.create_table(
        'email_verifications',
        sa.Column('id', psql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('pin_hash', sa.Text(), nullable=False),
        sa.Column('purpose', sa.String(length=32), server_default='sign_in', nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text("(now() at time zone 'utc')"), nullable=False),
    )
    op.create_index('ix_email_verifications_email_purpose', 'email_verifications', ['email', 'purpose'])

def downgrade():
    op.drop_index('ix_email_verifications_email_purpose', table_name='email_verifications')
    op.drop_table('email_verifications')
    op.drop_index('rate_limit_buckets_expires_at_idx', table_name='rate_limit_buckets')
    op.drop_table('rate_limit_buckets')
    op.drop_table('images')
    op.drop_table('mods')
    op.drop_table('vehicles')
    op.execute("drop index if exists profiles_username_unique_ci_idx")
    op.drop_table('profiles')
    op.drop_constraint('uq_users_email', 'users', type_='unique')
    op.drop_table('users')
