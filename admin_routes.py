from flask import Blueprint, request, jsonify, g
from sqlalchemy import func
from werkzeug.security import generate_password_hash
from models import (DIFFICULTIES, OPTION_LETTERS, Exam, ExamQuestion, Log, Question, Result, Student,
                    Subject, db)
from utils import add_log, admin_required, get_payload, parse_bool, parse_datetime, parse_int
from exam_session import close_expired_sessions, compute_percentage, result_to_dict

admin_bp = Blueprint('admin', __name__)


def _log(event_type, meta):
    add_log(g.admin.id, g.admin.username, 'admin', event_type, meta)


def _bad(msg, status=400, **extra):
    body = {'ok': False, 'msg': msg}
    body.update(extra)
    return jsonify(body), status


# ===== Students =====

@admin_bp.route('/api/admin/students', methods=['GET'])
@admin_required
def api_list_students():
    students = Student.query.order_by(Student.created_at.desc(), Student.id.desc()).all()
    return jsonify({'ok': True, 'students': [s.to_dict() for s in students]})


@admin_bp.route('/api/admin/students', methods=['POST'])
@admin_required
def api_create_student():
    d = get_payload()
    student_code = str(d.get('student_id') or '').strip()
    name = str(d.get('name') or '').strip()
    email = str(d.get('email') or '').strip()
    password = str(d.get('password') or '')
    if not student_code or not name or not password:
        return _bad('missing_fields')
    if Student.query.filter_by(student_id=student_code).first():
        return _bad('student_id_exists', 409)
    student = Student(student_id=student_code, name=name, email=email,
                      password_hash=generate_password_hash(password))
    db.session.add(student)
    db.session.commit()
    _log('create_student', {'student_id': student.id, 'student_code': student_code})
    return jsonify({'ok': True, 'student': student.to_dict()}), 201


@admin_bp.route('/api/admin/students/<int:student_pk>', methods=['PUT'])
@admin_required
def api_update_student(student_pk):
    student = db.session.get(Student, student_pk)
    if student is None:
        return _bad('student_not_found', 404)
    d = get_payload()
    student_code = str(d.get('student_id') or '').strip()
    name = str(d.get('name') or '').strip()
    if not student_code or not name:
        return _bad('missing_fields')
    clash = Student.query.filter(Student.student_id == student_code, Student.id != student.id).first()
    if clash:
        return _bad('student_id_exists', 409)
    student.student_id = student_code
    student.name = name
    student.email = str(d.get('email') or '').strip()
    if d.get('password'):
        student.password_hash = generate_password_hash(str(d['password']))
    db.session.commit()
    _log('update_student', {'student_id': student.id, 'password_changed': bool(d.get('password'))})
    return jsonify({'ok': True, 'student': student.to_dict()})


@admin_bp.route('/api/admin/students/<int:student_pk>', methods=['DELETE'])
@admin_required
def api_delete_student(student_pk):
    student = db.session.get(Student, student_pk)
    if student is None:
        return _bad('student_not_found', 404)
    db.session.delete(student)  # results go with the student
    db.session.commit()
    _log('delete_student', {'student_id': student_pk})
    return jsonify({'ok': True})


# ===== Subjects =====

def _subject_dict(subject, question_count, exam_count):
    return {
        'id': subject.id,
        'name': subject.name,
        'description': subject.description or '',
        'question_count': question_count,
        'exam_count': exam_count,
        'created_at': subject.created_at.isoformat() if subject.created_at else None,
    }


@admin_bp.route('/api/admin/subjects', methods=['GET'])
@admin_required
def api_list_subjects():
    q_counts = dict(db.session.query(Question.subject_id, func.count(Question.id))
                    .group_by(Question.subject_id).all())
    e_counts = dict(db.session.query(Exam.subject_id, func.count(Exam.id))
                    .group_by(Exam.subject_id).all())
    subjects = Subject.query.order_by(Subject.name.asc()).all()
    out = [_subject_dict(s, q_counts.get(s.id, 0), e_counts.get(s.id, 0)) for s in subjects]
    return jsonify({'ok': True, 'subjects': out})


@admin_bp.route('/api/admin/subjects', methods=['POST'])
@admin_required
def api_create_subject():
    d = get_payload()
    name = str(d.get('name') or '').strip()
    if not name:
        return _bad('missing_name')
    if Subject.query.filter_by(name=name).first():
        return _bad('subject_exists', 409)
    subject = Subject(name=name, description=str(d.get('description') or '').strip())
    db.session.add(subject)
    db.session.commit()
    _log('create_subject', {'subject_id': subject.id, 'name': name})
    return jsonify({'ok': True, 'subject': _subject_dict(subject, 0, 0)}), 201


@admin_bp.route('/api/admin/subjects/<int:subject_id>', methods=['PUT'])
@admin_required
def api_update_subject(subject_id):
    subject = db.session.get(Subject, subject_id)
    if subject is None:
        return _bad('subject_not_found', 404)
    d = get_payload()
    name = str(d.get('name') or '').strip()
    if not name:
        return _bad('missing_name')
    if Subject.query.filter(Subject.name == name, Subject.id != subject.id).first():
        return _bad('subject_exists', 409)
    subject.name = name
    if 'description' in d:
        subject.description = str(d.get('description') or '').strip()
    db.session.commit()
    _log('update_subject', {'subject_id': subject.id})
    return jsonify({'ok': True, 'subject': _subject_dict(subject, len(subject.questions), len(subject.exams))})


@admin_bp.route('/api/admin/subjects/<int:subject_id>', methods=['DELETE'])
@admin_required
def api_delete_subject(subject_id):
    subject = db.session.get(Subject, subject_id)
    if subject is None:
        return _bad('subject_not_found', 404)
    if subject.questions or subject.exams:
        return _bad('subject_in_use', question_count=len(subject.questions), exam_count=len(subject.exams))
    db.session.delete(subject)
    db.session.commit()
    _log('delete_subject', {'subject_id': subject_id})
    return jsonify({'ok': True})


# ===== Questions =====

def _question_fields(d):
    """Validated question columns from a payload, or (None, error_msg)."""
    fields = {
        'question_text': str(d.get('question_text') or '').strip(),
        'option_a': str(d.get('option_a') or '').strip(),
        'option_b': str(d.get('option_b') or '').strip(),
        'option_c': str(d.get('option_c') or '').strip(),
        'option_d': str(d.get('option_d') or '').strip(),
        'correct_answer': str(d.get('correct_answer') or '').strip().upper(),
        'difficulty': str(d.get('difficulty') or 'medium').strip().lower(),
    }
    if not all(fields[k] for k in ('question_text', 'option_a', 'option_b', 'option_c', 'option_d')):
        return None, 'missing_fields'
    if fields['correct_answer'] not in OPTION_LETTERS:
        return None, 'bad_correct_answer'
    if fields['difficulty'] not in DIFFICULTIES:
        return None, 'bad_difficulty'
    try:
        fields['subject_id'] = parse_int(d.get('subject_id'))
        fields['marks'] = parse_int(d.get('marks'), 1)
    except ValueError:
        return None, 'bad_types'
    if fields['subject_id'] is None:
        return None, 'missing_fields'
    if fields['marks'] < 1:
        return None, 'bad_marks'
    if db.session.get(Subject, fields['subject_id']) is None:
        return None, 'subject_not_found'
    return fields, None


@admin_bp.route('/api/admin/questions', methods=['GET'])
@admin_required
def api_list_questions():
    q = Question.query
    subject_id = request.args.get('subject_id', type=int)
    if subject_id:
        q = q.filter_by(subject_id=subject_id)
    questions = q.order_by(Question.id.desc()).all()
    return jsonify({'ok': True, 'questions': [x.to_dict() for x in questions]})


@admin_bp.route('/api/admin/questions', methods=['POST'])
@admin_required
def api_create_question():
    fields, err = _question_fields(get_payload())
    if err:
        return _bad(err, 404 if err == 'subject_not_found' else 400)
    question = Question(**fields)
    db.session.add(question)
    db.session.commit()
    _log('create_question', {'question_id': question.id, 'subject_id': question.subject_id})
    return jsonify({'ok': True, 'question': question.to_dict()}), 201


@admin_bp.route('/api/admin/questions/<int:question_id>', methods=['PUT'])
@admin_required
def api_update_question(question_id):
    question = db.session.get(Question, question_id)
    if question is None:
        return _bad('question_not_found', 404)
    fields, err = _question_fields(get_payload())
    if err:
        return _bad(err, 404 if err == 'subject_not_found' else 400)
    for key, value in fields.items():
        setattr(question, key, value)
    db.session.commit()
    _log('update_question', {'question_id': question.id})
    return jsonify({'ok': True, 'question': question.to_dict()})


@admin_bp.route('/api/admin/questions/<int:question_id>', methods=['DELETE'])
@admin_required
def api_delete_question(question_id):
    question = db.session.get(Question, question_id)
    if question is None:
        return _bad('question_not_found', 404)
    ExamQuestion.query.filter_by(question_id=question.id).delete(synchronize_session=False)
    db.session.delete(question)
    db.session.commit()
    _log('delete_question', {'question_id': question_id})
    return jsonify({'ok': True})


# ===== Exams =====

def _exam_fields(d, existing=None):
    title = str(d.get('title') or '').strip()
    try:
        subject_id = parse_int(d.get('subject_id'))
        duration = parse_int(d.get('duration_minutes'))
        per_exam = parse_int(d.get('questions_per_exam'))
        total_marks = parse_int(d.get('total_marks'))
        start_time = parse_datetime(d.get('start_time'))
        end_time = parse_datetime(d.get('end_time'))
    except ValueError:
        return None, ('bad_types', 400, {})
    if not title or subject_id is None or duration is None or per_exam is None:
        return None, ('missing_fields', 400, {})
    if duration < 1 or per_exam < 1:
        return None, ('bad_values', 400, {})
    if total_marks is not None and total_marks < 0:
        return None, ('bad_values', 400, {})
    if start_time and end_time and end_time <= start_time:
        return None, ('bad_time_window', 400, {})
    if db.session.get(Subject, subject_id) is None:
        return None, ('subject_not_found', 404, {})
    bank = Question.query.filter_by(subject_id=subject_id).count()
    if bank == 0:
        return None, ('no_questions_for_subject', 400, {})
    if per_exam > bank:
        return None, ('not_enough_questions', 400, {'available': bank})
    fields = {
        'title': title,
        'subject_id': subject_id,
        'duration_minutes': duration,
        'questions_per_exam': per_exam,
        'total_marks': total_marks if total_marks else per_exam,
        'start_time': start_time,
        'end_time': end_time,
    }
    if existing is None or 'is_active' in d:
        fields['is_active'] = parse_bool(d.get('is_active'), default=True)
    return fields, None


def _exam_dict(exam):
    out = exam.to_dict()
    out['total_questions_in_bank'] = exam.bank_size()
    return out


@admin_bp.route('/api/admin/exams', methods=['GET'])
@admin_required
def api_list_exams():
    exams = Exam.query.order_by(Exam.id.desc()).all()
    return jsonify({'ok': True, 'exams': [_exam_dict(e) for e in exams]})


@admin_bp.route('/api/admin/exams', methods=['POST'])
@admin_required
def api_create_exam():
    fields, err = _exam_fields(get_payload())
    if err:
        msg, status, extra = err
        return _bad(msg, status, **extra)
    exam = Exam(**fields)
    db.session.add(exam)
    db.session.commit()
    _log('create_exam', {'exam_id': exam.id, 'subject_id': exam.subject_id})
    return jsonify({'ok': True, 'exam': _exam_dict(exam)}), 201


@admin_bp.route('/api/admin/exams/<int:exam_id>', methods=['PUT'])
@admin_required
def api_update_exam(exam_id):
    exam = db.session.get(Exam, exam_id)
    if exam is None:
        return _bad('exam_not_found', 404)
    fields, err = _exam_fields(get_payload(), existing=exam)
    if err:
        msg, status, extra = err
        return _bad(msg, status, **extra)
    for key, value in fields.items():
        setattr(exam, key, value)
    db.session.commit()
    _log('update_exam', {'exam_id': exam.id})
    return jsonify({'ok': True, 'exam': _exam_dict(exam)})


@admin_bp.route('/api/admin/exams/<int:exam_id>', methods=['DELETE'])
@admin_required
def api_delete_exam(exam_id):
    exam = db.session.get(Exam, exam_id)
    if exam is None:
        return _bad('exam_not_found', 404)
    db.session.delete(exam)  # sessions and their pinned questions go with it
    db.session.commit()
    _log('delete_exam', {'exam_id': exam_id})
    return jsonify({'ok': True})


# ===== Results =====

@admin_bp.route('/api/admin/results', methods=['GET'])
@admin_required
def api_list_results():
    q = Result.query
    exam_id = request.args.get('exam_id', type=int)
    student_pk = request.args.get('student_id', type=int)
    if exam_id:
        q = q.filter(Result.exam_id == exam_id)
    if student_pk:
        q = q.filter(Result.student_id == student_pk)
    close_expired_sessions(q.filter(Result.submitted_at.is_(None)).all())
    out = []
    for r in q.filter(Result.submitted_at.isnot(None)).order_by(Result.submitted_at.desc()).all():
        item = result_to_dict(r)
        item['student_name'] = r.student.name if r.student else None
        item['student_code'] = r.student.student_id if r.student else None
        out.append(item)
    return jsonify({'ok': True, 'results': out})


@admin_bp.route('/api/admin/exams/<int:exam_id>/summary', methods=['GET'])
@admin_required
def api_exam_summary(exam_id):
    exam = db.session.get(Exam, exam_id)
    if exam is None:
        return _bad('exam_not_found', 404)
    results = Result.query.filter_by(exam_id=exam.id).all()
    close_expired_sessions(results)
    submitted = [r for r in results if r.is_submitted]
    percentages = [compute_percentage(r.score or 0, r.total_marks or 0) for r in submitted]
    summary = {
        'exam_id': exam.id,
        'exam_title': exam.title,
        'attempts': len(results),
        'in_progress': len(results) - len(submitted),
        'submitted': len(submitted),
        'timed_out': sum(1 for r in submitted if r.timed_out),
        'average_percentage': round(sum(percentages) / len(percentages), 2) if percentages else None,
        'max_percentage': max(percentages) if percentages else None,
        'min_percentage': min(percentages) if percentages else None,
    }
    return jsonify({'ok': True, 'summary': summary})


# ===== Audit logs =====

@admin_bp.route('/api/admin/logs', methods=['GET'])
@admin_required
def api_view_logs():
    q = Log.query
    etype = request.args.get('event_type')
    uid = request.args.get('user_id', type=int)
    role = request.args.get('role')
    limit = min(request.args.get('limit', default=500, type=int), 2000)
    if etype:
        q = q.filter_by(event_type=etype)
    if uid:
        q = q.filter_by(who_user_id=uid)
    if role:
        q = q.filter_by(role=role)
    logs = q.order_by(Log.created_at.desc(), Log.id.desc()).limit(limit).all()
    return jsonify({'ok': True, 'logs': [lg.to_dict() for lg in logs]})
