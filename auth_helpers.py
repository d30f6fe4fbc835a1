"""
Session Lifecycle Helper Functions
Token minting/verification, per-request session validation, silent refresh,
login/logout, password reset and the expired-session sweep
"""

import logging
import secrets
from datetime import datetime, timedelta

import jwt
from flask import current_app, has_app_context
from sqlalchemy import or_
from sqlalchemy.orm import Session

from config import Config
from models import AuthSession, Staff, Student, Guardian, UserType, ACCOUNT_MODELS

logger = logging.getLogger(__name__)

JWT_ALGORITHM = 'HS256'
INVALID_CREDENTIALS = 'Invalid identifier or password'
MIN_PASSWORD_LENGTH = 8


def _setting(name):
    """Read a setting from the running app, falling back to the base Config"""
    if has_app_context():
        return current_app.config.get(name, getattr(Config, name))
    return getattr(Config, name)


# ===== TOKENS =====

def generate_session_token() -> str:
    """Opaque session identifier stored in the sessions table"""
    return secrets.token_hex(64)


def generate_access_token(session_id: str, user_type: str, now: datetime = None) -> str:
    now = now or datetime.utcnow()
    payload = {
        'sid': session_id,
        'userType': user_type,
        'type': 'access',
        'iat': now,
        'exp': now + timedelta(seconds=_setting('ACCESS_TOKEN_TTL_SECONDS')),
    }
    return jwt.encode(payload, _setting('SECRET_KEY'), algorithm=JWT_ALGORITHM)


def generate_refresh_token(session_id: str, now: datetime = None) -> str:
    now = now or datetime.utcnow()
    payload = {
        'sid': session_id,
        'type': 'refresh',
        'iat': now,
        'exp': now + timedelta(seconds=_setting('REFRESH_TOKEN_TTL_SECONDS')),
    }
    return jwt.encode(payload, _setting('SECRET_KEY'), algorithm=JWT_ALGORITHM)


def decode_token(token: str, expected_type: str, verify_exp: bool = True) -> dict:
    """
    Verify a token's signature (and expiry) and check its type claim.

    Raises jwt.InvalidTokenError (or a subclass) on any failure.
    """
    payload = jwt.decode(
        token,
        _setting('SECRET_KEY'),
        algorithms=[JWT_ALGORITHM],
        options={'require': ['exp', 'sid'], 'verify_exp': verify_exp},
    )
    if payload.get('type') != expected_type:
        raise jwt.InvalidTokenError(f"Expected a {expected_type} token")
    return payload


# ===== ROLES & PERMISSIONS =====

def fetch_user_roles(session_db: Session, user_id: int, user_type) -> dict:
    """Role names and permission slugs for a user; only staff carry roles"""
    if isinstance(user_type, str):
        user_type = UserType(user_type)
    if user_type != UserType.STAFF:
        return {'roles': [], 'permissions': []}

    staff = session_db.query(Staff).filter_by(id=user_id).first()
    if not staff:
        return {'roles': [], 'permissions': []}

    roles = [role.name for role in staff.roles]
    permissions = sorted({perm.slug for role in staff.roles for perm in role.permissions})
    return {'roles': roles, 'permissions': permissions}


# ===== VALIDATION & REFRESH =====

def validate_session(session_db: Session, access_token: str, now: datetime = None) -> dict:
    """
    Decide whether an access token is backed by a live session.

    Returns ``{'valid': True, 'userType', 'userId', 'session'}`` or
    ``{'valid': False, 'refreshRequired': bool, 'error': str}``.
    refreshRequired is only set when the session row exists but its
    expiry has passed. Performs no writes.
    """
    now = now or datetime.utcnow()

    if not access_token:
        return {'valid': False, 'refreshRequired': False, 'error': 'No access token provided'}

    try:
        payload = decode_token(access_token, 'access')
    except jwt.ExpiredSignatureError:
        return {'valid': False, 'refreshRequired': False, 'error': 'Access token expired'}
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected access token: {e}")
        return {'valid': False, 'refreshRequired': False, 'error': 'Invalid access token'}

    auth_session = session_db.query(AuthSession).filter_by(token=payload['sid']).first()
    if not auth_session:
        return {'valid': False, 'refreshRequired': False, 'error': 'Session not found'}

    if auth_session.user_type.value != payload.get('userType'):
        return {'valid': False, 'refreshRequired': False, 'error': 'Invalid access token'}

    if auth_session.expires_at < now:
        return {'valid': False, 'refreshRequired': True, 'error': 'Session expired'}

    return {
        'valid': True,
        'userType': auth_session.user_type.value,
        'userId': auth_session.user_id,
        'session': auth_session.to_dict(),
    }


def refresh_access_token(session_db: Session, refresh_token: str, now: datetime = None) -> dict:
    """
    Mint a new access token for the session named by a refresh token.

    Re-syncs roles/permissions and pushes the session expiry forward in a
    single commit. A missing session row is a hard failure.
    """
    now = now or datetime.utcnow()

    if not refresh_token:
        return {'success': False, 'error': 'Unauthorized'}

    try:
        payload = decode_token(refresh_token, 'refresh')
    except jwt.ExpiredSignatureError:
        return {'success': False, 'error': 'Refresh token expired'}
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected refresh token: {e}")
        return {'success': False, 'error': 'Invalid refresh token'}

    session_id = payload['sid']
    try:
        auth_session = session_db.query(AuthSession).filter_by(token=session_id).first()
        if not auth_session:
            logger.info("Refresh requested for a session that no longer exists")
            return {'success': False, 'error': 'Session not found'}

        grants = fetch_user_roles(session_db, auth_session.user_id, auth_session.user_type)
        extension = timedelta(seconds=_setting('SESSION_EXTENSION_SECONDS'))

        auth_session.expires_at = max(auth_session.expires_at, now) + extension
        auth_session.roles = grants['roles']
        auth_session.permissions = grants['permissions']
        session_db.commit()

        new_access_token = generate_access_token(session_id, auth_session.user_type.value)
        logger.debug(f"Session for user {auth_session.user_id} extended to {auth_session.expires_at}")
        return {'success': True, 'newAccessToken': new_access_token}
    except Exception as e:
        session_db.rollback()
        logger.error(f"Failed to refresh access token: {e}")
        return {'success': False, 'error': str(e)}


def handle_session(session_db: Session, access_token: str, refresh_token: str,
                   required_permissions=None, now: datetime = None) -> dict:
    """
    Per-request orchestration of validate -> refresh -> permission check.

    ``action`` is one of:
      allow     - access token valid
      refreshed - access token replaced; ``newAccessToken`` must be stored
      login     - caller has to authenticate again
      denied    - authenticated but missing a required permission
    """
    session_data = validate_session(session_db, access_token, now=now) if access_token else None
    new_access_token = None

    if not (session_data and session_data['valid']) and refresh_token:
        refresh_result = refresh_access_token(session_db, refresh_token, now=now)
        if not refresh_result['success']:
            logger.warning(f"Failed to refresh access token: {refresh_result['error']}")
            return {'action': 'login', 'error': refresh_result['error']}

        new_access_token = refresh_result['newAccessToken']
        session_data = validate_session(session_db, new_access_token, now=now)

    if not session_data or not session_data['valid']:
        error = session_data['error'] if session_data else 'No access token provided'
        return {'action': 'login', 'error': error}

    if required_permissions:
        granted = session_data['session']['permissions']
        if not all(p in granted for p in required_permissions):
            return {'action': 'denied', 'sessionData': session_data, 'newAccessToken': new_access_token}

    return {
        'action': 'refreshed' if new_access_token else 'allow',
        'sessionData': session_data,
        'newAccessToken': new_access_token,
    }


# ===== ACCOUNTS =====

def find_account(session_db: Session, identifier: str):
    """Look up staff, then students, then guardians by email or username"""
    identifier = (identifier or '').strip()
    if not identifier:
        return None, None

    for model in (Staff, Student, Guardian):
        account = session_db.query(model).filter(
            or_(model.email == identifier, model.username == identifier)
        ).first()
        if account:
            return account, model.USER_TYPE
    return None, None


def load_account(session_db: Session, user_type, user_id: int):
    if isinstance(user_type, str):
        user_type = UserType(user_type)
    model = ACCOUNT_MODELS[user_type]
    return session_db.query(model).filter_by(id=user_id).first()


def login(session_db: Session, identifier: str, password: str,
          user_agent: str = '', ip: str = '0.0.0.0', now: datetime = None) -> dict:
    """Verify credentials and open a new session"""
    now = now or datetime.utcnow()
    identifier = (identifier or '').strip()

    if not identifier or not password:
        return {'success': False, 'error': INVALID_CREDENTIALS}

    account = None
    for model in (Staff, Student, Guardian):
        candidate = session_db.query(model).filter(
            or_(model.email == identifier, model.username == identifier)
        ).first()
        if candidate and candidate.check_password(password):
            account = candidate
            break

    if not account:
        logger.info("Login failed: no matching account or wrong password")
        return {'success': False, 'error': INVALID_CREDENTIALS}

    if isinstance(account, Staff) and not account.is_active:
        return {'success': False, 'error': 'Account disabled', 'inactiveReason': 'Account disabled'}

    inactive_reason = getattr(account, 'inactive_reason', None)
    if inactive_reason:
        return {'success': False, 'error': inactive_reason, 'inactiveReason': inactive_reason}

    user_type = account.USER_TYPE
    try:
        session_id = generate_session_token()
        grants = fetch_user_roles(session_db, account.id, user_type)

        auth_session = AuthSession(
            token=session_id,
            user_id=account.id,
            user_type=user_type,
            roles=grants['roles'],
            permissions=grants['permissions'],
            user_agent=(user_agent or '')[:255],
            ip=ip or '0.0.0.0',
            created_at=now,
            expires_at=now + timedelta(seconds=_setting('SESSION_TTL_SECONDS')),
        )
        session_db.add(auth_session)
        session_db.commit()
    except Exception as e:
        session_db.rollback()
        logger.error(f"Could not create session: {e}")
        raise

    logger.info(f"{user_type.value} {account.id} logged in")
    return {
        'success': True,
        'accessToken': generate_access_token(session_id, user_type.value),
        'refreshToken': generate_refresh_token(session_id),
        'user': account.to_public_dict(),
    }


def logout(session_db: Session, refresh_token: str) -> dict:
    """Delete the session behind a refresh token; an already-gone session is not an error"""
    if not refresh_token:
        return {'success': True, 'sessionDeleted': False}

    try:
        payload = decode_token(refresh_token, 'refresh', verify_exp=False)
    except jwt.InvalidTokenError:
        return {'success': True, 'sessionDeleted': False}

    try:
        deleted = session_db.query(AuthSession).filter_by(token=payload['sid']).delete()
        session_db.commit()
    except Exception as e:
        session_db.rollback()
        logger.error(f"Logout failed to delete session: {e}")
        raise
    return {'success': True, 'sessionDeleted': bool(deleted)}


def sweep_expired_sessions(session_db: Session, now: datetime = None, grace_seconds: int = 0) -> int:
    """Delete sessions whose expiry (plus grace) has passed; returns the number removed"""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(seconds=grace_seconds)
    removed = session_db.query(AuthSession).filter(AuthSession.expires_at < cutoff).delete()
    session_db.commit()
    logger.info(f"Swept {removed} expired sessions")
    return removed


# ===== PASSWORD RESET =====

def request_password_reset(session_db: Session, identifier: str) -> dict:
    """Store a reset code on the account and email it"""
    account, user_type = find_account(session_db, identifier)
    if not account:
        return {'success': False, 'error': 'User not found'}

    code = account.generate_reset_code(_setting('RESET_CODE_TTL_MINUTES'))
    session_db.commit()

    # The code is stored either way; a mail failure must not fail the request
    try:
        from notification_email import send_password_reset_email
        sent, message = send_password_reset_email(account.email, code, account.full_name or 'User')
        if not sent:
            logger.warning(f"Reset code email not sent to {user_type.value} {account.id}: {message}")
    except Exception as e:
        logger.error(f"Reset code email failed: {e}")

    return {'success': True, 'userType': user_type.value}


def validate_password_strength(password: str):
    """Return an error message, or None when the password is acceptable"""
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return f'Password must be at least {MIN_PASSWORD_LENGTH} characters'
    if password.isdigit() or password.isalpha():
        return 'Password must contain both letters and numbers'
    return None


def reset_password(session_db: Session, identifier: str, reset_code: str, new_password: str) -> dict:
    account, user_type = find_account(session_db, identifier)
    if not account:
        return {'success': False, 'error': 'User not found'}

    if not account.verify_reset_code(reset_code):
        # Keep the failed-attempt count (and a burnt code) even though the reset fails
        session_db.commit()
        return {'success': False, 'error': 'Invalid or expired reset code'}

    problem = validate_password_strength(new_password)
    if problem:
        return {'success': False, 'error': problem}

    account.set_password(new_password)
    account.clear_reset_code()
    session_db.commit()
    logger.info(f"Password reset for {user_type.value} {account.id}")
    return {'success': True, 'userType': user_type.value}
