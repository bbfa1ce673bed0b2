from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import current_app, g, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from models import Admin, Log, Student, db, utcnow

STUDENT_TOKEN = 'student'
ADMIN_TOKEN = 'admin'


def add_log(who_id, username, role, event_type, meta=None):
    """Helper function to add audit log entries"""
    entry = Log(who_user_id=who_id, username=username, role=role, event_type=event_type, meta=meta or {})
    db.session.add(entry)
    db.session.commit()


def get_payload():
    """JSON body or form data as a dict; never None."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict() if request.form else {}


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def parse_int(value, default=None):
    """int(value), or default for None/''. Raises ValueError on junk."""
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise ValueError('boolean is not an integer')
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError('not an integer: %r' % value)
        return int(value)
    return int(str(value).strip())


def parse_datetime(value):
    """ISO-8601 string to naive UTC datetime; None/'' -> None. Raises ValueError."""
    if value is None or value == '':
        return None
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


# ===== Bearer tokens =====

def create_token(kind, subject_id, **claims):
    now = datetime.now(timezone.utc)
    payload = {
        'sub': str(subject_id),
        'kind': kind,
        'iat': now,
        'exp': now + timedelta(hours=current_app.config['JWT_EXPIRES_HOURS']),
    }
    payload.update(claims)
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm=current_app.config['JWT_ALGORITHM'])


def decode_token(token):
    return jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=[current_app.config['JWT_ALGORITHM']])


def _bearer_token():
    auth_header = request.headers.get('Authorization', '')
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == 'bearer':
        return parts[1]
    return None


def _token_required(kind, model, target):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            token = _bearer_token()
            if not token:
                return jsonify({'ok': False, 'msg': 'token_required'}), 401
            try:
                data = decode_token(token)
            except jwt.ExpiredSignatureError:
                return jsonify({'ok': False, 'msg': 'token_expired'}), 401
            except jwt.InvalidTokenError as e:
                current_app.logger.warning('Rejected bearer token on %s: %s', request.path, e)
                return jsonify({'ok': False, 'msg': 'invalid_token'}), 401
            if data.get('kind') != kind:
                return jsonify({'ok': False, 'msg': 'invalid_token_type'}), 403
            try:
                account = db.session.get(model, int(data['sub']))
            except (KeyError, ValueError):
                return jsonify({'ok': False, 'msg': 'invalid_token'}), 401
            if account is None or not getattr(account, 'is_active', True):
                return jsonify({'ok': False, 'msg': 'account_not_found'}), 401
            setattr(g, target, account)
            g.token_claims = data
            return fn(*args, **kwargs)
        return wrapper
    return decorator


student_required = _token_required(STUDENT_TOKEN, Student, 'student')
student_required.__doc__ = 'Protect a route with a student bearer token; sets g.student'

admin_required = _token_required(ADMIN_TOKEN, Admin, 'admin')
admin_required.__doc__ = 'Protect a route with an admin bearer token; sets g.admin'


# ===== Rate limiting =====

def _per_window(max_requests):
    return '%d per %d seconds' % (max_requests, current_app.config['RATE_LIMIT_WINDOW_SECONDS'])


def api_rate_limit():
    return _per_window(current_app.config['RATE_LIMIT_MAX'])


def auth_rate_limit():
    return _per_window(current_app.config['AUTH_RATE_LIMIT_MAX'])


# Keyed by client IP. The application limit is one bucket shared by every
# route that is not exempt; auth_bp adds its own stricter bucket.
limiter = Limiter(get_remote_address, application_limits=[api_rate_limit])


def isoformat(dt):
    return dt.isoformat() if dt else None


def seconds_until(dt, now=None):
    """Whole seconds from now until dt, floored at zero."""
    now = now or utcnow()
    return max(0, int((dt - now).total_seconds()))
