# main.py
"""
College Administration Portal
Application factory: config, database, Flask-Login, blueprints, error pages
"""

import os
import logging
from flask import Flask, request, g, jsonify, render_template_string
from flask_login import LoginManager, current_user

# --- local modules ---
from config import config
from database import init_database, create_tables, get_session
from auth_context import ACCESS_TOKEN_COOKIE, SessionUser
from auth_helpers import validate_session
from auth_routes import auth_bp, require_session
from assignment_routes import assignment_bp
from api_routes import api_bp
from cli_commands import register_cli_commands


DASHBOARD_TEMPLATE = """
<h1>{{ portal }}</h1>
<p>Welcome, {{ user.firstName or '' }} {{ user.lastName or '' }} ({{ user.userType }})</p>
<ul>
  <li>Signed in as {{ user_id }}</li>
  <li>Roles: {{ roles or 'none' }}</li>
</ul>
<form method="post" action="{{ url_for('auth.logout_api') }}"><button type="submit">Log out</button></form>
"""


def create_app(config_name=None) -> Flask:
    """Create the portal application"""
    config_name = config_name or os.environ.get('APP_CONFIG', 'default')
    config_class = config[config_name]

    app = Flask(__name__)
    app.config.from_object(config_class)

    # Logging
    logging.basicConfig(level=logging.DEBUG if app.config.get('DEBUG') else logging.INFO)
    logger = logging.getLogger(__name__)

    # DB init
    init_database(config_class())
    if app.config.get('TESTING'):
        create_tables()
    else:
        from init_db import run_on_startup
        if not run_on_startup():
            logger.warning("Database initialization had issues; continuing with existing state")

    # Flask-Login: the user comes from the token-validated session, never from the Flask session cookie
    login_manager = LoginManager()
    login_manager.init_app(app)
    login_manager.login_view = "auth.login_page"

    @login_manager.request_loader
    def load_user_from_request(req):
        user = g.get('session_user')
        if user is not None:
            return user

        header = req.headers.get('Authorization', '')
        token = header[len('Bearer '):].strip() if header.startswith('Bearer ') else req.cookies.get(ACCESS_TOKEN_COOKIE)
        if not token:
            return None

        s = get_session()
        try:
            result = validate_session(s, token)
        except Exception as e:
            logger.error(f"request_loader error: {e}")
            return None
        finally:
            s.close()
        return SessionUser(result['session']) if result['valid'] else None

    # CLI
    register_cli_commands(app)

    # Blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(assignment_bp)
    app.register_blueprint(api_bp)
    logger.info("✅ Auth, assignment and API blueprints registered")

    @app.route("/")
    @require_session()
    def index():
        return render_template_string(
            DASHBOARD_TEMPLATE,
            portal=app.config.get('PORTAL_NAME'),
            user=g.auth.user or {},
            user_id=current_user.get_id(),
            roles=', '.join(current_user.roles),
        )

    @app.errorhandler(404)
    def nf(_):
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'error': 'Not found'}), 404
        return render_template_string("<h1>404</h1><p>Not found.</p><p><a href='/'>Home</a></p>"), 404

    @app.errorhandler(500)
    def ie(_):
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'error': 'Internal server error'}), 500
        return render_template_string("<h1>500</h1><p>Internal error.</p><p><a href='/'>Home</a></p>"), 500

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True, host="0.0.0.0", port=5000, use_reloader=False)
