from flask import Blueprint, current_app, g, jsonify
from sqlalchemy import or_
from werkzeug.security import check_password_hash
from models import Admin, Student
from utils import (ADMIN_TOKEN, STUDENT_TOKEN, add_log, admin_required, auth_rate_limit, create_token, get_payload,
                   limiter, student_required)

auth_bp = Blueprint('auth', __name__)
limiter.shared_limit(auth_rate_limit, scope='auth')(auth_bp)


@auth_bp.route('/api/auth/login', methods=['POST'])
def student_login():
    d = get_payload()
    student_code = str(d.get('student_id') or '').strip()
    password = str(d.get('password') or '')
    if not student_code or not password:
        return jsonify({'ok': False, 'msg': 'missing_credentials'}), 400

    student = Student.query.filter_by(student_id=student_code).first()
    if not student or not check_password_hash(student.password_hash, password):
        current_app.logger.warning('Failed student login for %s', student_code)
        add_log(None, student_code, 'student', 'student_login_failed', {})
        return jsonify({'ok': False, 'msg': 'invalid_credentials'}), 401

    token = create_token(STUDENT_TOKEN, student.id, student_id=student.student_id)
    add_log(student.id, student.student_id, 'student', 'student_login', {})
    return jsonify({'ok': True, 'token': token, 'student': student.to_dict()})


@auth_bp.route('/api/auth/admin/login', methods=['POST'])
def admin_login():
    d = get_payload()
    # the admin may sign in with either the e-mail address or the username
    login = str(d.get('email') or d.get('username') or '').strip()
    password = str(d.get('password') or '')
    if not login or not password:
        return jsonify({'ok': False, 'msg': 'missing_credentials'}), 400

    admin = Admin.query.filter(or_(Admin.email == login, Admin.username == login),
                               Admin.is_active.is_(True)).first()
    if not admin or not check_password_hash(admin.password_hash, password):
        current_app.logger.warning('Failed admin login for %s', login)
        add_log(None, login, 'admin', 'admin_login_failed', {})
        return jsonify({'ok': False, 'msg': 'invalid_credentials'}), 401

    token = create_token(ADMIN_TOKEN, admin.id, username=admin.username, role=admin.role)
    add_log(admin.id, admin.username, 'admin', 'admin_login', {})
    return jsonify({'ok': True, 'token': token, 'admin': admin.to_dict()})


@auth_bp.route('/api/auth/validate', methods=['GET'])
@student_required
def validate_student_token():
    return jsonify({'ok': True, 'student': g.student.to_dict()})


@auth_bp.route('/api/auth/admin/validate', methods=['GET'])
@admin_required
def validate_admin_token():
    return jsonify({'ok': True, 'admin': g.admin.to_dict()})
