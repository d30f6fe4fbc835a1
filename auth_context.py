"""
Authentication Context
Cookie names, the per-request AuthContext and the Flask-Login user wrapper
"""

import json
import logging
from datetime import datetime

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = 'accessToken'
REFRESH_TOKEN_COOKIE = 'refreshToken'
USER_COOKIE = 'user'
LAST_ACTIVITY_COOKIE = 'lastActivity'

AUTH_COOKIES = (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, USER_COOKIE, LAST_ACTIVITY_COOKIE)


# ===== SESSION USER WRAPPER FOR FLASK-LOGIN =====

class SessionUser:
    """Wrapper class for Flask-Login built from a validated session"""

    def __init__(self, session_data):
        self.session_id = session_data['sessionId']
        self.id = session_data['userId']
        self.user_type = session_data['userType']
        self.roles = list(session_data.get('roles') or [])
        self.permissions = list(session_data.get('permissions') or [])

    def get_id(self):
        """Required by Flask-Login - returns unique identifier"""
        return f'{self.user_type.lower()}_{self.id}'

    @property
    def is_authenticated(self):
        return True

    @property
    def is_active(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        return self.user_type == 'Staff'

    @property
    def is_student(self):
        return self.user_type == 'Student'

    def has_permissions(self, required):
        return all(p in self.permissions for p in (required or []))

    def __repr__(self):
        return f"<SessionUser {self.get_id()}>"


# ===== AUTH CONTEXT =====

class AuthContext:
    """
    Browser-facing authentication state for one request.

    Built from the readable ``user`` and ``lastActivity`` cookies with
    ``from_request`` and torn down with ``clear`` on logout. The access and
    refresh tokens are HTTP-only and are never exposed through this object.
    """

    def __init__(self, user=None, last_activity=None):
        self.user = user
        self.last_activity = last_activity

    @classmethod
    def from_request(cls, request):
        user = None
        raw_user = request.cookies.get(USER_COOKIE)
        if raw_user:
            try:
                user = json.loads(raw_user)
            except ValueError:
                logger.warning("Ignoring malformed user cookie")

        last_activity = None
        raw_activity = request.cookies.get(LAST_ACTIVITY_COOKIE)
        if raw_activity:
            try:
                # milliseconds since epoch
                last_activity = datetime.utcfromtimestamp(int(raw_activity) / 1000)
            except (ValueError, OverflowError, OSError):
                logger.warning("Ignoring malformed lastActivity cookie")

        return cls(user=user, last_activity=last_activity)

    @property
    def is_authenticated(self):
        return self.user is not None

    @property
    def user_type(self):
        return self.user.get('userType') if self.user else None

    @property
    def inactive_reason(self):
        return self.user.get('inactiveReason') if self.user else None

    def is_idle(self, timeout_seconds, now=None):
        """True when the last recorded activity is older than the timeout"""
        if self.last_activity is None:
            return False
        now = now or datetime.utcnow()
        return (now - self.last_activity).total_seconds() > timeout_seconds

    def touch(self, now=None):
        self.last_activity = now or datetime.utcnow()

    def clear(self):
        self.user = None
        self.last_activity = None

    def user_cookie_value(self):
        return json.dumps(self.user or {})

    def last_activity_cookie_value(self):
        stamp = self.last_activity or datetime.utcnow()
        return str(int((stamp - datetime(1970, 1, 1)).total_seconds() * 1000))


# ===== COOKIE HELPERS =====

def set_access_cookie(response, token, max_age, secure=False):
    response.set_cookie(ACCESS_TOKEN_COOKIE, token, max_age=max_age, httponly=True,
                        secure=secure, samesite='Lax', path='/')


def set_login_cookies(response, access_token, refresh_token, auth_context, config):
    secure = config.get('COOKIE_SECURE', False)
    set_access_cookie(response, access_token, config['ACCESS_TOKEN_TTL_SECONDS'], secure)
    response.set_cookie(REFRESH_TOKEN_COOKIE, refresh_token, max_age=config['REFRESH_TOKEN_TTL_SECONDS'],
                        httponly=True, secure=secure, samesite='Lax', path='/')
    set_user_cookie(response, auth_context, config['REFRESH_TOKEN_TTL_SECONDS'], secure)
    set_activity_cookie(response, auth_context, secure)


def set_user_cookie(response, auth_context, max_age, secure=False):
    # Readable by the browser; carries no credentials
    response.set_cookie(USER_COOKIE, auth_context.user_cookie_value(),
                        max_age=max_age, secure=secure, samesite='Lax', path='/')


def set_activity_cookie(response, auth_context, secure=False):
    response.set_cookie(LAST_ACTIVITY_COOKIE, auth_context.last_activity_cookie_value(),
                        secure=secure, samesite='Lax', path='/')


def clear_auth_cookies(response):
    for name in AUTH_COOKIES:
        response.delete_cookie(name, path='/')
