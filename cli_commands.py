"""
Flask CLI commands for the college portal
"""

import click
from flask import Flask
import logging
import secrets

from database import get_session
from init_db import run_on_startup
from models import Staff, Student, Guardian, Role, IntakeGroup, UserType, ACCOUNT_MODELS
from auth_helpers import sweep_expired_sessions
from assignment_helpers import regenerate_assignment_password

logger = logging.getLogger(__name__)


def register_cli_commands(app: Flask):
    """Register CLI commands with the Flask app"""

    @app.cli.command("setup-db")
    def setup_db_command():
        """Create tables and seed permissions, roles and the default admin"""
        click.echo("🚀 Setting up database...")
        if run_on_startup():
            click.echo("✅ Database setup completed successfully!")
        else:
            click.echo("❌ Database setup failed!")

    @app.cli.command("create-user")
    @click.option("--type", "user_type", type=click.Choice([t.value for t in UserType]), required=True)
    @click.option("--username", required=True, help="Login username")
    @click.option("--email", required=True, help="Email address (credentials are sent here)")
    @click.option("--first-name", required=True, help="First name")
    @click.option("--last-name", required=True, help="Last name")
    @click.option("--password", default=None, help="Password (generated when omitted)")
    @click.option("--role", "roles", multiple=True, help="Role name for staff (repeatable)")
    @click.option("--admission-number", default=None, help="Student number (students only)")
    @click.option("--intake-group", "intake_group_id", type=int, default=None, help="Intake group id (students only)")
    @click.option("--student-id", type=int, default=None, help="Linked student id (guardians only)")
    @click.option("--send-email/--no-send-email", default=True, help="Email the login details")
    def create_user_command(user_type, username, email, first_name, last_name, password, roles,
                            admission_number, intake_group_id, student_id, send_email):
        """Create a staff, student or guardian account"""
        model = ACCOUNT_MODELS[UserType(user_type)]
        password = password or secrets.token_urlsafe(9)

        session = get_session()
        try:
            if session.query(model).filter((model.username == username) | (model.email == email)).first():
                click.echo(f"❌ A {user_type.lower()} with that username or email already exists")
                return

            account = model(username=username, email=email, first_name=first_name, last_name=last_name)
            account.set_password(password)

            if model is Staff:
                found = session.query(Role).filter(Role.name.in_(roles)).all() if roles else []
                missing = set(roles) - {r.name for r in found}
                if missing:
                    click.echo(f"❌ Unknown role(s): {', '.join(sorted(missing))}")
                    return
                account.roles = found
            elif model is Student:
                account.admission_number = admission_number
                if intake_group_id:
                    group = session.query(IntakeGroup).filter_by(id=intake_group_id).first()
                    if not group:
                        click.echo(f"❌ Intake group {intake_group_id} not found")
                        return
                    account.intake_group_id = group.id
                    account.campus_id = group.campus_id
            elif model is Guardian:
                account.student_id = student_id

            session.add(account)
            session.commit()
            click.echo(f"✅ {user_type} '{username}' created (id {account.id})")
        except Exception as e:
            session.rollback()
            click.echo(f"❌ Error: {e}")
            return
        finally:
            session.close()

        if send_email:
            # Account exists either way; a mail failure is only reported
            from notification_email import send_account_created_email
            sent, message = send_account_created_email(email, f"{first_name} {last_name}", username, password)
            if sent:
                click.echo("📧 Login details emailed")
            else:
                logger.warning(f"Credentials email not sent to {email}: {message}")
                click.echo(f"⚠️  Email not sent: {message}")

    @app.cli.command("sweep-sessions")
    @click.option("--grace", default=0, type=int, help="Keep sessions this many seconds past expiry")
    def sweep_sessions_command(grace):
        """Delete expired login sessions"""
        session = get_session()
        try:
            removed = sweep_expired_sessions(session, grace_seconds=grace)
            click.echo(f"🧹 Removed {removed} expired session(s)")
        except Exception as e:
            session.rollback()
            click.echo(f"❌ Error: {e}")
        finally:
            session.close()

    @app.cli.command("regenerate-password")
    @click.argument("assignment_id")
    def regenerate_password_command(assignment_id):
        """Issue a new access password for an assignment"""
        session = get_session()
        try:
            result = regenerate_assignment_password(session, assignment_id)
            if result['success']:
                click.echo(f"🔑 New password: {result['password']} (valid 20 minutes)")
            else:
                click.echo(f"❌ {result['error']}")
        finally:
            session.close()
