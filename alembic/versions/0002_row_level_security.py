"""Row-level security, public projections and storage path predicates (PostgreSQL).

The ORM guard enforces the same rules in-process; these policies keep them true
for any other connection. The requesting user is read from the transaction-local
`app.current_user_id` setting that the session publishes on begin.
"""
from alembic import op

from models import DEFAULT_BUCKET

# revision identifiers, used by Alembic.
revision = '0002_row_level_security'
down_revision = '0001_initial_schema'
branch_labels = None
depends_on = None

PUBLIC_ROLE = 'garage_public'

PUBLISHED_VEHICLE = """
  exists (
    select 1 from vehicles v join profiles p on p.id = v.profile_id
    where v.id = {vehicle} and v.is_public and p.username is not null
  )"""

PUBLISHED_MOD = """
  exists (
    select 1 from mods m
    join vehicles v on v.id = m.vehicle_id
    join profiles p on p.id = v.profile_id
    where m.id = {mod} and v.is_public and p.username is not null
  )"""

OWNER = {
    'profiles': "profiles.id = app_current_user_id()",
    'vehicles': "vehicles.profile_id = app_current_user_id()",
    'mods': """exists (
        select 1 from vehicles v
        where v.id = mods.vehicle_id and v.profile_id = app_current_user_id()
    )""",
    'images': """images.profile_id = app_current_user_id() and (
        (images.vehicle_id is not null and exists (
            select 1 from vehicles v
            where v.id = images.vehicle_id and v.profile_id = app_current_user_id()))
        or
        (images.mod_id is not null and exists (
            select 1 from mods m join vehicles v on v.id = m.vehicle_id
            where m.id = images.mod_id and v.profile_id = app_current_user_id()))
    )""",
}

# vehicles' own policy reads only profiles; reading vehicles again would recurse into itself
VEHICLE_IS_PUBLISHED = """vehicles.is_public and exists (
    select 1 from profiles p where p.id = vehicles.profile_id and p.username is not null
  )"""

PUBLIC = {
    'profiles': "profiles.username is not null",
    'vehicles': VEHICLE_IS_PUBLISHED,
    'mods': PUBLISHED_VEHICLE.format(vehicle='mods.vehicle_id'),
    'images': "(images.vehicle_id is not null and {}) or (images.mod_id is not null and {})".format(
        PUBLISHED_VEHICLE.format(vehicle='images.vehicle_id'),
        PUBLISHED_MOD.format(mod='images.mod_id'),
    ),
}

PUBLIC_COLUMNS = {
    'profiles': 'id, username, display_name, bio, avatar_path, created_at',
    'vehicles': 'id, profile_id, name, year, make, model, trim, hero_image_path, sort_order, created_at, is_public',
    'mods': 'id, vehicle_id, title, category, cost_cents, notes, installed_on, sort_order, created_at',
    'images': 'id, vehicle_id, mod_id, storage_bucket, storage_path, caption, sort_order, created_at',
}

PUBLIC_VIEWS = {
    'public_profiles': "select id, username, display_name, bio, avatar_path, created_at "
                       "from profiles where username is not null",
    'public_vehicles': "select id, profile_id, name, year, make, model, trim, hero_image_path, sort_order, created_at "
                       "from vehicles where " + VEHICLE_IS_PUBLISHED,
    'public_mods': "select id, vehicle_id, title, category, cost_cents, notes, installed_on, sort_order, created_at "
                   "from mods where " + PUBLISHED_VEHICLE.format(vehicle='mods.vehicle_id'),
    'public_images': "select id, vehicle_id, mod_id, storage_bucket, storage_path, caption, sort_order, created_at "
                     "from images where " + PUBLIC['images'],
}


def upgrade():
    op.execute("""
        create or replace function app_current_user_id() returns uuid
        language sql stable as $$
          select nullif(current_setting('app.current_user_id', true), '')::uuid
        $$
    """)

    for table in OWNER:
        op.execute(f"alter table {table} enable row level security")
        op.execute(f"alter table {table} force row level security")
        op.execute(
            f"create policy {table}_owner_all on {table} for all "
            f"using ({OWNER[table]}) with check ({OWNER[table]})"
        )
        op.execute(f"create policy {table}_public_select on {table} for select using ({PUBLIC[table]})")

    op.execute(f"""
        do $$ begin
          if not exists (select 1 from pg_roles where rolname = '{PUBLIC_ROLE}') then
            create role {PUBLIC_ROLE} nologin;
          end if;
        end $$
    """)
    for table, columns in PUBLIC_COLUMNS.items():
        op.execute(f"revoke all privileges on {table} from {PUBLIC_ROLE}")
        op.execute(f"grant select ({columns}) on {table} to {PUBLIC_ROLE}")

    for view, body in PUBLIC_VIEWS.items():
        op.execute(f"create or replace view {view} with (security_invoker = true) as {body}")
        op.execute(f"grant select on {view} to {PUBLIC_ROLE}")

    # same rule as valid_storage_path: non-blank, no '..' segment, no empty segment
    op.execute("""
        create or replace function garage_object_path_is_clean(object_name text)
        returns boolean language sql immutable as $$
          select object_name is not null
            and btrim(object_name) <> ''
            and position('//' in object_name) = 0
            and not ('..' = any(string_to_array(object_name, '/')))
        $$
    """)
    op.execute("""
        create or replace function garage_object_owner_can_write(object_name text, requester uuid)
        returns boolean language sql stable as $$
          with path as (select string_to_array(object_name, '/') as parts)
          select requester is not null
            and garage_object_path_is_clean(object_name)
            and exists (
            select 1 from path
            where array_length(parts, 1) = 3
              and parts[1] <> '' and parts[2] <> '' and parts[3] <> ''
              and (
                (parts[1] = 'avatars' and parts[2] = requester::text)
                or (parts[1] = 'vehicles' and exists (
                      select 1 from vehicles v
                      where v.id::text = parts[2] and v.profile_id = requester))
                or (parts[1] = 'mods' and exists (
                      select 1 from mods m join vehicles v on v.id = m.vehicle_id
                      where m.id::text = parts[2] and v.profile_id = requester))
              )
          )
        $$
    """)
    op.execute("""
        create or replace function garage_object_is_public_readable(
          object_name text, bucket_name text default '{default_bucket}'
        )
        returns boolean language sql stable as $$
          select garage_object_path_is_clean(object_name) and (
            exists (select 1 from public_profiles pp where pp.avatar_path = object_name)
            or exists (select 1 from public_vehicles pv where pv.hero_image_path = object_name)
            or exists (select 1 from public_images pi
                       where pi.storage_bucket = bucket_name and pi.storage_path = object_name)
          )
        $$
    """.format(default_bucket=DEFAULT_BUCKET.replace("'", "''")))
    op.execute("revoke all on function garage_object_owner_can_write(text, uuid) from public")
    op.execute("revoke all on function garage_object_is_public_readable(text, text) from public")
    op.execute(f"grant execute on function garage_object_is_public_readable(text, text) to {PUBLIC_ROLE}")


def downgrade():
    op.execute("drop function if exists garage_object_is_public_readable(text, text)")
    op.execute("drop function if exists garage_object_owner_can_write(text, uuid)")
    op.execute("drop function if exists garage_object_path_is_clean(text)")
    for view in reversed(list(PUBLIC_VIEWS)):
        op.execute(f"drop view if exists {view}")
    for table in OWNER:
        op.execute(f"revoke all privileges on {table} from {PUBLIC_ROLE}")
        op.execute(f"drop policy if exists {table}_public_select on {table}")
        op.execute(f"drop policy if exists {table}_owner_all on {table}")
        op.execute(f"alter table {table} no force row level security")
        op.execute(f"alter table {table} disable row level security")
    op.execute("drop function if exists app_current_user_id()")
