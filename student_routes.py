from flask import Blueprint, g, jsonify
from models import Exam, Result, db
from utils import add_log, get_payload, student_required
import exam_session
from exam_session import ExamSessionError

student_bp = Blueprint('student', __name__)


def _load_exam(exam_id):
    exam = db.session.get(Exam, exam_id)
    if exam is None:
        raise ExamSessionError('exam_not_found', 404)
    return exam


def _log(event_type, meta):
    add_log(g.student.id, g.student.student_id, 'student', event_type, meta)


@student_bp.errorhandler(ExamSessionError)
def handle_session_error(err):
    return jsonify(err.to_dict()), err.status


@student_bp.route('/api/exams', methods=['GET'])
@student_required
def api_student_exams():
    exams = Exam.query.filter_by(is_active=True).order_by(Exam.created_at.desc(), Exam.id.desc()).all()
    sessions = {r.exam_id: r for r in Result.query.filter_by(student_id=g.student.id).all()}
    out = []
    for e in exams:
        result = sessions.get(e.id)
        exam_session.close_if_expired(result, e)
        item = e.to_dict()
        item['status'] = exam_session.session_status(result)
        item['already_submitted'] = bool(result and result.is_submitted)
        out.append(item)
    return jsonify({'ok': True, 'exams': out})


@student_bp.route('/api/exams/<int:exam_id>/completion-status', methods=['GET'])
@student_required
def api_completion_status(exam_id):
    result = exam_session.find_session(g.student.id, exam_id)
    exam_session.close_if_expired(result)
    completed =bool(result and result.is_submitted)
    return jsonify({'ok': True, 'completed': completed, 'result_id': result.id if completed else None,
                    'status': exam_session.session_status(result)})


@student_bp.route('/api/exams/<int:exam_id>/start', methods=['POST'])
@student_required
def api_start_exam(exam_id):
    exam = _load_exam(exam_id)
    result, created = exam_session.start_session(g.student, exam)
    status = 200
    if created:
        _log('exam_start', {'exam_id': exam.id, 'result_id': result.id, 'num_questions': result.total_questions})
        status = 201
    return jsonify({'ok': True, 'resumed': not created, 'session': exam_session.session_state(result, exam)}), status


@student_bp.route('/api/exams/<int:exam_id>/questions', methods=['GET'])
@student_required
def api_exam_questions(exam_id):
    exam = _load_exam(exam_id)
    result, questions = exam_session.get_session_questions(g.student, exam)
    if not questions:
        return jsonify({'ok': False, 'msg': 'no_questions'}), 404
    return jsonify({'ok': True, 'session': exam_session.session_state(result, exam), 'questions': questions})


@student_bp.route('/api/exams/<int:exam_id>/submit', methods=['POST'])
@student_required
def api_submit_exam(exam_id):
    exam = _load_exam(exam_id)
    d = get_payload()
    result, summary = exam_session.submit_session(g.student, exam, d.get('answers'))
    _log('submit_exam', {'exam_id': exam.id, 'result_id': result.id, 'score': summary['score'],
                         'total_marks': summary['total_marks'], 'time_taken': result.time_taken})
    out = dict(summary)
    out['result_id'] = result.id
    out['time_taken'] = result.time_taken
    out['submitted_at'] = result.submitted_at.isoformat()
    return jsonify({'ok': True, 'result': out})


@student_bp.route('/api/results', methods=['GET'])
@student_required
def api_student_results():
    exam_session.close_expired_sessions(
        Result.query.filter(Result.student_id == g.student.id, Result.submitted_at.is_(None)).all())
    results = (Result.query
               .filter(Result.student_id == g.student.id, Result.submitted_at.isnot(None))
               .order_by(Result.submitted_at.desc())
               .all())
    return jsonify({'ok': True, 'results': [exam_session.result_to_dict(r) for r in results]})


@student_bp.route('/api/results/<int:result_id>', methods=['GET'])
@student_required
def api_student_result_detail(result_id):
    result = db.session.get(Result, result_id)
    if result is not None and result.student_id == g.student.id:
        exam_session.close_if_expired(result)
    if result is None or result.student_id != g.student.id or not result.is_submitted:
        return jsonify({'ok': False, 'msg': 'result_not_found'}), 404
    return jsonify({'ok': True, 'result': exam_session.result_to_dict(result, include_breakdown=True)})
