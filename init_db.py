"""
Database Initialization and Integrity Checker
Runs on startup to ensure all tables exist and the permission/role catalogue is seeded
"""

import os
import sys
from datetime import datetime

from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError
from sqlalchemy.schema import sort_tables
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Import all models to register them with Base.metadata
from models import Base, Permission, Role, Staff
import assignment_models  # noqa: F401
from database import init_database, get_session
import database


# (slug, display name, group)
PERMISSIONS = [
    ('view_tests_tasks', 'View tests & tasks', 'Assignments'),
    ('create_tests_tasks', 'Create tests & tasks', 'Assignments'),
    ('edit_tests_tasks', 'Edit tests & tasks', 'Assignments'),
    ('delete_tests_tasks', 'Delete tests & tasks', 'Assignments'),
    ('view_mark_tests_tasks', 'View marking queue', 'Assignments'),
    ('mark_tests_tasks', 'Mark tests & tasks', 'Assignments'),
    ('moderate_tests_tasks', 'Moderate marks', 'Assignments'),
    ('view_results', 'View results', 'Results'),
    ('view_results_sor', 'Statement of results', 'Results'),
    ('create_events', 'Create events', 'Calendar'),
    ('edit_events', 'Edit events', 'Calendar'),
    ('delete_events', 'Delete events', 'Calendar'),
    ('view_accommodation', 'View accommodation', 'Accommodation'),
    ('create_accommodation', 'Create accommodation', 'Accommodation'),
    ('edit_accommodation', 'Edit accommodation', 'Accommodation'),
    ('delete_accommodation', 'Delete accommodation', 'Accommodation'),
    ('view_intake_group', 'View intake groups', 'Intake Groups'),
    ('add_intake_group', 'Add intake groups', 'Intake Groups'),
    ('edit_intake_group', 'Edit intake groups', 'Intake Groups'),
    ('delete_intake_group', 'Delete intake groups', 'Intake Groups'),
    ('upload_learning_material', 'Upload learning material', 'Learning Material'),
    ('view_learning_material', 'View learning material', 'Learning Material'),
    ('view_staff', 'View staff', 'Staff'),
    ('add_staff', 'Add staff', 'Staff'),
    ('view_students', 'View students', 'Students'),
    ('add_students', 'Add students', 'Students'),
]

LECTURER_PERMISSIONS = [
    'view_tests_tasks', 'create_tests_tasks', 'edit_tests_tasks',
    'view_mark_tests_tasks', 'mark_tests_tasks', 'view_results',
    'view_intake_group', 'upload_learning_material', 'view_learning_material',
    'view_students',
]

MODERATOR_PERMISSIONS = LECTURER_PERMISSIONS + ['moderate_tests_tasks', 'view_results_sor']


def get_existing_tables(engine):
    """Get list of existing tables in database"""
    inspector = inspect(engine)
    return set(inspector.get_table_names())


def get_expected_tables():
    """Get list of all expected tables from models"""
    return set(Base.metadata.tables.keys())


def create_missing_tables(engine, existing_tables, expected_tables):
    """Create any missing tables in foreign-key order"""
    missing_tables = expected_tables - existing_tables

    if not missing_tables:
        print(" All tables exist")
        return []

    print(f"\n Found {len(missing_tables)} missing tables:")
    for table in sorted(missing_tables):
        print(f"  - {table}")

    sorted_tables = sort_tables([Base.metadata.tables[name] for name in missing_tables])

    created = []
    failed = []
    for table in sorted_tables:
        try:
            table.create(engine, checkfirst=True)
            created.append(table.name)
        except OperationalError as e:
            failed.append((table.name, str(e)))
            print(f"   {table.name}: {str(e)[:80]}")

    if created:
        print(f"\n Successfully created {len(created)} tables")
    if failed:
        print(f"\n Failed to create {len(failed)} tables:")
        for table_name, error in failed:
            print(f"  - {table_name}: {error[:100]}")

    return created


def seed_permissions(session):
    """Insert any permission slugs that are missing; returns the number added"""
    existing = {slug for (slug,) in session.query(Permission.slug).all()}
    added = 0
    for slug, name, group_name in PERMISSIONS:
        if slug not in existing:
            session.add(Permission(slug=slug, name=name, group_name=group_name))
            added += 1
    session.flush()
    return added


def seed_roles(session):
    """Create the default roles if they do not exist yet"""
    by_slug = {p.slug: p for p in session.query(Permission).all()}
    defaults = {
        'Administrator': ('Full access to the portal', list(by_slug)),
        'Lecturer': ('Creates and marks tests and tasks', LECTURER_PERMISSIONS),
        'Moderator': ('Moderates marks and issues statements of results', MODERATOR_PERMISSIONS),
    }

    created = []
    for name, (description, slugs) in defaults.items():
        if session.query(Role).filter_by(name=name).first():
            continue
        session.add(Role(name=name, description=description,
                         permissions=[by_slug[s] for s in slugs if s in by_slug]))
        created.append(name)
    session.flush()
    return created


def create_default_admin_user(session):
    """Create a default administrator if no staff exist"""
    if session.query(Staff).count():
        return False

    admin = Staff(
        username='admin',
        email=os.getenv('DEFAULT_ADMIN_EMAIL', 'admin@college.local'),
        first_name='Portal',
        last_name='Admin',
        is_active=True,
    )
    password = os.getenv('DEFAULT_ADMIN_PASSWORD', 'admin123')
    admin.set_password(password)
    admin.roles = [session.query(Role).filter_by(name='Administrator').first()]
    session.add(admin)
    session.flush()

    print("\nCreated default admin user:")
    print("  Username: admin")
    print("  IMPORTANT: Change this password immediately in production!")
    return True


def initialize_database(verbose=True, config=None):
    """
    Main function to initialize and verify database integrity
    Returns: (success: bool, created_tables: list, issues: list)
    """
    if verbose:
        print("\n" + "=" * 60)
        print("DATABASE INITIALIZATION & INTEGRITY CHECK")
        print("=" * 60)
        print(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    try:
        engine = database.ENGINE
        if engine is None or config is not None:
            engine, _ = init_database(config)

        if verbose:
            print(f"\nDatabase URL: {engine.url.render_as_string(hide_password=True)}")

        try:
            with engine.connect():
                if verbose:
                    print("Database connection successful")
        except Exception as e:
            print(f" Database connection failed: {e}")
            return False, [], [{'error': str(e)}]

        existing_tables = get_existing_tables(engine)
        expected_tables = get_expected_tables()

        if verbose:
            print(f"\nExisting tables: {len(existing_tables)}")
            print(f"Expected tables: {len(expected_tables)}")

        created_tables = create_missing_tables(engine, existing_tables, expected_tables)

        session = get_session()
        try:
            added_permissions = seed_permissions(session)
            created_roles = seed_roles(session)
            create_default_admin_user(session)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        if verbose:
            print("\n" + "=" * 60)
            if created_tables or added_permissions or created_roles:
                print("[OK] Database initialization completed")
                if created_tables:
                    print(f"    - Created {len(created_tables)} new tables")
                if added_permissions:
                    print(f"    - Added {added_permissions} permissions")
                if created_roles:
                    print(f"    - Created roles: {', '.join(created_roles)}")
            else:
                print("[OK] Database integrity verified - all structures match models")
            print("=" * 60 + "\n")

        return True, created_tables, []

    except Exception as e:
        print(f"\n[ERROR] Database initialization failed: {e}")
        return False, [], [{'error': str(e)}]


def run_on_startup(config=None, verbose=True):
    """Wrapper function to run on application startup"""
    success, created_tables, issues = initialize_database(verbose=verbose, config=config)

    if not success:
        print("\n[WARNING] Database initialization failed!")
        print("The application may not work correctly.")
        print("Please check the database configuration and try again.\n")
        return False

    return True


if __name__ == '__main__':
    """Run standalone"""
    success = run_on_startup()
    sys.exit(0 if success else 1)
