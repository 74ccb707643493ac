"""
Authentication for the JSON API.

Clients authenticate either with a bearer JWT or with the Flask session
cookie set at login. Cookie-authenticated writes must echo the CSRF token
from ``GET /api/auth/csrf`` in the ``X-CSRFToken`` header.
"""
import logging
from datetime import datetime, timedelta
from functools import wraps

from flask import Blueprint, current_app, g, jsonify, request, session
from flask_wtf.csrf import generate_csrf, validate_csrf
from jose import JWTError, jwt
from wtforms.validators import ValidationError

from app_models import db, User, StudentProfile
from errors import ApiError
from forms import LoginForm, PasswordChangeForm, bind_form, form_errors
from security import limiter

logger = logging.getLogger(__name__)

LOGIN_LIMIT_MESSAGE = 'Too many login attempts from this address. Please try again later.'

ADMIN_ROLES = ('admin', 'principal', 'vice principal')
STAFF_ROLES = ADMIN_ROLES + ('teacher',)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


def create_access_token(user, expires_delta=None):
    """Create JWT access token"""
    expires_delta = expires_delta or timedelta(minutes=current_app.config['ACCESS_TOKEN_EXPIRE_MINUTES'])
    claims = {
        'sub': str(user.id),
        'role': user.role,
        'exp': datetime.utcnow() + expires_delta,
        'type': 'access',
    }
    return jwt.encode(claims, current_app.config['JWT_SECRET_KEY'], algorithm=current_app.config['JWT_ALGORITHM'])


def decode_access_token(token):
    try:
        payload = jwt.decode(token, current_app.config['JWT_SECRET_KEY'], algorithms=[current_app.config['JWT_ALGORITHM']])
    except JWTError:
        raise ApiError('Could not validate credentials', 401)
    if payload.get('type') != 'access' or not payload.get('sub'):
        raise ApiError('Could not validate credentials', 401)
    return payload


def load_current_user():
    """Resolve the caller from the bearer token or the session cookie"""
    if 'current_user' in g:
        return g.current_user

    user = None
    g.auth_method = None
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        payload = decode_access_token(header[len('Bearer '):].strip())
        user = db.session.get(User, int(payload['sub']))
        g.auth_method = 'token'
    elif session.get('user_id'):
        user = db.session.get(User, session['user_id'])
        g.auth_method = 'session'

    if user is not None and not user.is_active:
        user = None
    g.current_user = user
    return user


def check_csrf():
    if not current_app.config.get('WTF_CSRF_ENABLED', True):
        return
    if request.method not in ('POST', 'PUT', 'PATCH', 'DELETE'):
        return
    token = None
    for header in current_app.config['WTF_CSRF_HEADERS']:
        token = request.headers.get(header)
        if token:
            break
    try:
        validate_csrf(token)
    except ValidationError as e:
        raise ApiError(e.args[0], 400)


def require_user(roles=None):
    """Return the authenticated user, enforcing roles when given"""
    user = load_current_user()
    if user is None:
        raise ApiError('Not authorized, please log in', 401)
    if g.auth_method == 'session':
        check_csrf()
    if roles and user.role not in roles:
        raise ApiError(f"User role '{user.role}' is not authorized to access this route", 403)
    return user


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        require_user()
        return f(*args, **kwargs)
    return decorated_function


def roles_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            require_user(roles)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def user_payload(user):
    data = user.to_dict()
    profile = StudentProfile.query.filter_by(user_id=user.id).first()
    if profile:
        data['student_profile'] = profile.to_dict()
    return data


@auth_bp.route('/login', methods=['POST'])
@limiter.limit(lambda: current_app.config['LOGIN_RATE_LIMIT'], methods=['POST'],
               deduct_when=lambda response: response.status_code >= 400, error_message=LOGIN_LIMIT_MESSAGE)
def login():
    """Only failed attempts count against the limit"""
    form = bind_form(LoginForm, request.get_json(silent=True) or request.form.to_dict())
    if not form.validate():
        raise ApiError('Validation failed', 400, form_errors(form))

    if form.email.data:
        user = User.query.filter(db.func.lower(User.email) == form.email.data.strip().lower()).first()
    else:
        user = User.query.filter_by(student_id=form.student_id.data.strip()).first()

    if not user or not user.check_password(form.password.data):
        logger.info("Failed login for %s", form.email.data or form.student_id.data)
        raise ApiError('Invalid credentials', 401)
    if not user.is_active:
        raise ApiError('Account is deactivated', 403)

    session.clear()
    session['user_id'] = user.id
    session['user_role'] = user.role
    session.permanent = True
    logger.info("User %s logged in", user.id)

    return jsonify({
        'success': True,
        'token': create_access_token(user),
        'csrf_token': generate_csrf(),
        'user': user_payload(user),
    })


@auth_bp.route('/me')
@login_required
def me():
    return jsonify({'success': True, 'data': user_payload(g.current_user)})


@auth_bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'success': True, 'message': 'Logged out'})


@auth_bp.route('/csrf')
def csrf_token():
    return jsonify({'success': True, 'csrf_token': generate_csrf()})


@auth_bp.route('/password', methods=['PUT'])
@login_required
def change_password():
    form = bind_form(PasswordChangeForm, request.get_json(silent=True))
    if not form.validate():
        raise ApiError('Validation failed', 400, form_errors(form))

    user = g.current_user
    if not user.check_password(form.current_password.data):
        raise ApiError('Current password is incorrect', 400)

    try:
        user.set_password(form.new_password.data)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return jsonify({'success': True, 'message': 'Password updated'})
