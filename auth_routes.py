"""
Authentication Routes
Login/logout pages, the cookie-setting hop, token and password-reset APIs,
and the require_session decorator used by every protected route
"""

from functools import wraps
import logging

import jwt
from flask import (
    Blueprint, current_app, flash, g, jsonify, make_response, redirect,
    render_template_string, request, url_for
)

from auth_context import (
    ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, USER_COOKIE, AuthContext, SessionUser,
    clear_auth_cookies, set_access_cookie, set_activity_cookie,
    set_login_cookies, set_user_cookie
)
from auth_helpers import (
    decode_token, handle_session, load_account, login, logout,
    refresh_access_token, request_password_reset, reset_password,
    validate_session
)
from database import get_session

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)


LOGIN_TEMPLATE = """
<h1>{{ portal }}</h1>
{% with messages = get_flashed_messages(with_categories=true) %}
  {% for category, message in messages %}<p class="{{ category }}">{{ message }}</p>{% endfor %}
{% endwith %}
<form method="post">
  <input type="hidden" name="next" value="{{ next_url }}">
  <label>Email or username <input name="identifier" value="{{ identifier }}"></label>
  <label>Password <input name="password" type="password"></label>
  <button type="submit">Log in</button>
</form>
<p><a href="{{ url_for('auth.forgot_password') }}">Forgot password?</a></p>
"""

FORGOT_PASSWORD_TEMPLATE = """
<h1>Reset your password</h1>
<p>Request a code, then enter it with your new password.</p>
<form method="post" action="{{ url_for('auth.reset_password_api') }}">
  <input type="hidden" name="action" value="request">
  <label>Email or username <input name="email"></label>
  <button type="submit">Send code</button>
</form>
<form method="post" action="{{ url_for('auth.reset_password_api') }}">
  <input type="hidden" name="action" value="reset">
  <label>Email or username <input name="email"></label>
  <label>Code <input name="code"></label>
  <label>New password <input name="newPassword" type="password"></label>
  <button type="submit">Reset password</button>
</form>
"""


def _is_safe_redirect(target):
    """Only same-site relative paths are allowed as redirect targets"""
    return bool(target) and target.startswith('/') and not target.startswith('//') and '\\' not in target


def _bearer_token():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip()
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


def _request_path():
    path = request.full_path
    return path[:-1] if path.endswith('?') else path


def _client_ip():
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr or '0.0.0.0'


def _text_field(data, *keys):
    """First non-empty value among keys, as stripped text; JSON numbers are accepted"""
    for key in keys:
        value = data.get(key)
        if value is not None and not isinstance(value, (dict, list)) and str(value).strip():
            return str(value).strip()
    return ''


def _login_redirect():
    response = redirect(url_for('auth.login_page', next=_request_path()))
    clear_auth_cookies(response)
    return response


# ===== DECORATORS =====

def require_session(required_permissions=None, api=False):
    """
    Protect a route with the access/refresh token pair.

    Page routes redirect to login, /denied or the cookie-setting hop; API
    routes (api=True) answer 401/403 JSON instead. A refreshed access token
    is written straight onto the response unless REFRESH_COOKIE_MODE is
    "redirect", in which case GET page loads go through /set-cookie.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            cfg = current_app.config
            auth = AuthContext.from_request(request)

            if not api and auth.is_idle(cfg['IDLE_TIMEOUT_SECONDS']):
                logger.info("Idle session, forcing logout")
                return redirect(url_for('auth.logout_page', reason='idle'))

            access_token = _bearer_token() if api else request.cookies.get(ACCESS_TOKEN_COOKIE)
            refresh_token = request.cookies.get(REFRESH_TOKEN_COOKIE)

            session_db = get_session()
            try:
                outcome = handle_session(session_db, access_token, refresh_token, required_permissions)
                if outcome['action'] in ('allow', 'refreshed') and not auth.is_authenticated:
                    session_data = outcome['sessionData']
                    account = load_account(session_db, session_data['userType'], session_data['userId'])
                    auth.user = account.to_public_dict() if account else None
            except Exception as e:
                logger.error(f"Session check failed: {e}")
                outcome = {'action': 'login', 'error': 'Session check failed'}
            finally:
                session_db.close()

            action = outcome['action']
            if action == 'login':
                if api:
                    return jsonify({'success': False, 'error': outcome.get('error') or 'Unauthorized'}), 401
                return _login_redirect()

            if action == 'denied':
                if api:
                    return jsonify({'success': False, 'error': 'Forbidden'}), 403
                return redirect(url_for('auth.denied'))

            new_access_token = outcome.get('newAccessToken')
            if (new_access_token and not api and request.method == 'GET'
                    and cfg['REFRESH_COOKIE_MODE'] == 'redirect'):
                return redirect(url_for('auth.set_cookie', accessToken=new_access_token,
                                        redirect=_request_path()))

            g.session_user = SessionUser(outcome['sessionData']['session'])
            auth.touch()
            g.auth = auth

            response = make_response(f(*args, **kwargs))
            secure = cfg.get('COOKIE_SECURE', False)
            if new_access_token:
                set_access_cookie(response, new_access_token, cfg['ACCESS_TOKEN_TTL_SECONDS'], secure)
            if not api and auth.is_authenticated:
                if not request.cookies.get(USER_COOKIE):
                    set_user_cookie(response, auth, cfg['REFRESH_TOKEN_TTL_SECONDS'], secure)
                set_activity_cookie(response, auth, secure)
            return response

        return decorated_function
    return decorator


# ===== PAGES =====

@auth_bp.route('/login', methods=['GET', 'POST'])
def login_page():
    """Login form; also accepts a JSON body for API clients"""
    portal = current_app.config.get('PORTAL_NAME', 'College Portal')
    next_url = request.values.get('next', '')
    if not _is_safe_redirect(next_url):
        next_url = '/'

    if request.method == 'GET':
        return render_template_string(LOGIN_TEMPLATE, portal=portal, next_url=next_url, identifier='')

    wants_json = request.is_json
    data = request.get_json(silent=True) if wants_json else request.form
    if not isinstance(data, dict):
        data = {}
    identifier = _text_field(data, 'identifier', 'email', 'username')
    password = data.get('password')
    if not isinstance(password, str):
        password = ''

    session_db = get_session()
    try:
        result = login(session_db, identifier, password,
                       user_agent=request.headers.get('User-Agent', ''), ip=_client_ip())
    except Exception as e:
        logger.error(f"Login error: {e}")
        if wants_json:
            return jsonify({'success': False, 'error': 'Login failed'}), 500
        flash('Login failed, please try again', 'error')
        return render_template_string(LOGIN_TEMPLATE, portal=portal, next_url=next_url,
                                      identifier=identifier), 500
    finally:
        session_db.close()

    if not result['success']:
        if wants_json:
            body = {'success': False, 'error': result['error']}
            if result.get('inactiveReason'):
                body['inactiveReason'] = result['inactiveReason']
                return jsonify(body), 403
            return jsonify(body), 401
        if result.get('inactiveReason'):
            response = redirect(url_for('auth.account_disabled'))
            set_user_cookie(response, AuthContext(user={'inactiveReason': result['inactiveReason']}),
                            current_app.config['ACCESS_TOKEN_TTL_SECONDS'])
            return response
        flash(result['error'], 'error')
        return render_template_string(LOGIN_TEMPLATE, portal=portal, next_url=next_url,
                                      identifier=identifier), 401

    auth = AuthContext(user=result['user'])
    auth.touch()
    if wants_json:
        response = jsonify({'success': True, 'user': result['user']})
    else:
        response = redirect(next_url)
    set_login_cookies(response, result['accessToken'], result['refreshToken'], auth, current_app.config)
    return response


@auth_bp.route('/logout')
def logout_page():
    session_db = get_session()
    try:
        logout(session_db, request.cookies.get(REFRESH_TOKEN_COOKIE))
    except Exception as e:
        logger.error(f"Logout error: {e}")
    finally:
        session_db.close()

    if request.args.get('reason') == 'idle':
        flash('You were logged out after a period of inactivity', 'info')
    AuthContext.from_request(request).clear()
    response = redirect(url_for('auth.login_page'))
    clear_auth_cookies(response)
    return response


@auth_bp.route('/set-cookie')
def set_cookie():
    """Second hop of the redirect refresh flow: store the new access token, then continue"""
    access_token = request.args.get('accessToken', '')
    target = request.args.get('redirect', '/')
    if not _is_safe_redirect(target):
        target = '/'

    try:
        decode_token(access_token, 'access')
    except jwt.InvalidTokenError:
        logger.warning("set-cookie called with an invalid access token")
        return _login_redirect()

    response = redirect(target)
    set_access_cookie(response, access_token, current_app.config['ACCESS_TOKEN_TTL_SECONDS'],
                      current_app.config.get('COOKIE_SECURE', False))
    return response


@auth_bp.route('/denied')
def denied():
    return render_template_string(
        "<h1>Access denied</h1><p>You do not have permission to view this page.</p>"
        "<p><a href='/'>Back to dashboard</a></p>"
    ), 403


@auth_bp.route('/account-disabled')
def account_disabled():
    auth = AuthContext.from_request(request)
    reason = auth.inactive_reason or 'Your account has been disabled'
    response = make_response(render_template_string(
        "<h1>Account disabled</h1><p>{{ reason }}</p><p>Please contact the administration office.</p>",
        reason=reason
    ), 403)
    clear_auth_cookies(response)
    return response


@auth_bp.route('/forgot-password')
def forgot_password():
    return render_template_string(FORGOT_PASSWORD_TEMPLATE)


# ===== API =====

@auth_bp.route('/api/auth/logout', methods=['POST'])
def logout_api():
    session_db = get_session()
    try:
        result = logout(session_db, request.cookies.get(REFRESH_TOKEN_COOKIE))
    except Exception as e:
        logger.error(f"Logout error: {e}")
        result = {'success': True, 'sessionDeleted': False}
    finally:
        session_db.close()

    response = jsonify({'success': True, 'message': 'Logged out successfully',
                        'sessionDeleted': result['sessionDeleted']})
    clear_auth_cookies(response)
    return response


@auth_bp.route('/api/auth/reset-password', methods=['POST'])
def reset_password_api():
    data = request.get_json(silent=True) or request.form
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'Invalid request body'}), 400
    action = data.get('action')
    identifier = _text_field(data, 'email', 'identifier')

    if action not in ('request', 'reset'):
        return jsonify({'success': False, 'error': 'Invalid action'}), 400
    if not identifier:
        return jsonify({'success': False, 'error': 'Email is required'}), 400

    session_db = get_session()
    try:
        if action == 'request':
            result = request_password_reset(session_db, identifier)
            if not result['success']:
                return jsonify(result), 404
            return jsonify({'success': True, 'message': 'Reset code sent to your email'})

        code = _text_field(data, 'code')
        new_password = data.get('newPassword')
        if not code or not isinstance(new_password, str) or not new_password:
            return jsonify({'success': False, 'error': 'Code and new password are required'}), 400

        result = reset_password(session_db, identifier, code, new_password)
        if not result['success']:
            status = 404 if result['error'] == 'User not found' else 400
            return jsonify(result), status
        return jsonify({'success': True, 'message': 'Password has been reset'})
    except Exception as e:
        session_db.rollback()
        logger.error(f"Password reset error: {e}")
        return jsonify({'success': False, 'error': 'Password reset failed'}), 500
    finally:
        session_db.close()


@auth_bp.route('/api/validate-token', methods=['GET', 'POST'])
def validate_token_api():
    token = _bearer_token()
    if not token and request.is_json:
        token = (request.get_json(silent=True) or {}).get('token')

    session_db = get_session()
    try:
        result = validate_session(session_db, token)
        if not result['valid']:
            return jsonify(result), 401

        account = load_account(session_db, result['userType'], result['userId'])
        if not account:
            return jsonify({'valid': False, 'refreshRequired': False, 'error': 'User not found'}), 401

        user = account.to_public_dict()
        user['email'] = account.email
        user['roles'] = result['session']['roles']
        user['permissions'] = result['session']['permissions']
        return jsonify({'valid': True, 'user': user})
    except Exception as e:
        logger.error(f"Token validation error: {e}")
        return jsonify({'valid': False, 'error': 'Token validation failed'}), 500
    finally:
        session_db.close()


@auth_bp.route('/api/refresh-token', methods=['POST'])
def refresh_token_api():
    session_db = get_session()
    try:
        result = refresh_access_token(session_db, request.cookies.get(REFRESH_TOKEN_COOKIE))
    finally:
        session_db.close()

    if not result['success']:
        return jsonify({'success': False, 'error': result['error']}), 401

    response = jsonify({'success': True})
    set_access_cookie(response, result['newAccessToken'], current_app.config['ACCESS_TOKEN_TTL_SECONDS'],
                      current_app.config.get('COOKIE_SECURE', False))
    return response
