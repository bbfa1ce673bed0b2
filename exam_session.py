"""Exam session lifecycle: start, timed question delivery, submission and scoring.

A session is the single ``Result`` row of a (student, exam) pair. It is created
at start together with the ``ExamQuestion`` rows that pin the sampled questions,
finalized once at submit and never touched again. The pinned rows are the only
questions delivered to the student and the only ones graded.
"""
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
import random

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import ExamQuestion, Question, Result, db, utcnow
from utils import isoformat, seconds_until

NOT_STARTED = 'not_started'
IN_PROGRESS = 'in_progress'
SUBMITTED = 'submitted'


class ExamSessionError(Exception):
    """A request that the session state does not allow.

    ``msg`` is the machine-readable code returned to the client and
    ``status`` the HTTP status the route should answer with.
    """

    def __init__(self, msg, status=400, **extra):
        super().__init__(msg)
        self.msg = msg
        self.status = status
        self.extra = extra

    def to_dict(self):
        out = {'ok': False, 'msg': self.msg}
        out.update(self.extra)
        return out


# ===== Scoring =====

def normalize_letter(value):
    if value is None:
        return ''
    return str(value).strip().upper()


def normalize_answers(raw):
    """Map question id -> selected letter.

    Accepts a list of ``{"question_id": .., "selected_answer": ..}`` items or a
    mapping keyed by question id (``"12"`` or ``"q12"``). Malformed entries are
    skipped; a later entry for the same question wins.
    """
    if isinstance(raw, dict):
        items = raw.items()
    elif isinstance(raw, list):
        items = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            selected = entry.get('selected_answer', entry.get('answer'))
            items.append((entry.get('question_id'), selected))
    else:
        raise ExamSessionError('answers_required', 400)

    out = {}
    for key, selected in items:
        key_str = str(key).strip() if key is not None else ''
        if key_str[:1].lower() == 'q':
            key_str = key_str[1:]
        try:
            qid = int(key_str)
        except ValueError:
            continue
        letter = normalize_letter(selected)
        if letter:
            out[qid] = letter
    return out


def score_answers(answer_key, answers):
    """Grade ``answers`` against ``answer_key``.

    ``answer_key`` is a sequence of ``(question_id, correct_answer, marks)``;
    ``answers`` maps question id to the selected letter. Answers to questions
    outside the key do not count.
    """
    score = 0
    total_marks = 0
    answered = 0
    correct_count = 0
    for question_id, correct_answer, marks in answer_key:
        marks = int(marks or 1)
        total_marks += marks
        selected = answers.get(question_id)
        if not selected:
            continue
        answered += 1
        if selected == normalize_letter(correct_answer):
            score += marks
            correct_count += 1
    return {
        'score': score,
        'total_marks': total_marks,
        'total_questions': len(answer_key),
        'answered': answered,
        'correct_count': correct_count,
        'percentage': compute_percentage(score, total_marks),
    }


def compute_percentage(score, total_marks):
    """Percentage rounded half up to a whole number; 0 without marks."""
    if not total_marks:
        return 0
    pct = Decimal(score) * 100 / Decimal(total_marks)
    return int(pct.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


# ===== Timing =====

def session_deadline(result, exam):
    deadline = result.start_time + timedelta(minutes=exam.duration_minutes)
    if exam.end_time and exam.end_time < deadline:
        deadline = exam.end_time
    return deadline


def is_expired(result, exam, now=None):
    now = now or utcnow()
    grace = timedelta(seconds=current_app.config['SUBMIT_GRACE_SECONDS'])
    return now > session_deadline(result, exam) + grace


def session_status(result):
    if result is None:
        return NOT_STARTED
    return SUBMITTED if result.is_submitted else IN_PROGRESS


def session_state(result, exam, now=None):
    """What the client needs to run its (advisory) timer."""
    now = now or utcnow()
    deadline = session_deadline(result, exam)
    return {
        'result_id': result.id,
        'exam_id': exam.id,
        'status': session_status(result),
        'start_time': isoformat(result.start_time),
        'deadline': isoformat(deadline),
        'server_time': isoformat(now),
        'remaining_seconds': seconds_until(deadline, now),
        'duration_minutes': exam.duration_minutes,
        'total_questions': result.total_questions,
        'total_marks': result.total_marks,
    }


# ===== Lifecycle =====

def find_session(student_id, exam_id):
    return Result.query.filter_by(student_id=student_id, exam_id=exam_id).first()


def _finalize(result, values):
    """Write the one and only submission of ``result``.

    The UPDATE only matches while ``submitted_at`` is NULL, so of two racing
    submissions exactly one wins.
    """
    rows = (Result.query
            .filter(Result.id == result.id, Result.submitted_at.is_(None))
            .update(values, synchronize_session=False))
    db.session.commit()
    if rows == 0:
        raise ExamSessionError('already_submitted', 403)
    db.session.refresh(result)
    return result


def _close_expired(result, exam, now):
    deadline = session_deadline(result, exam)
    total_marks = sum(eq.marks for eq in result.exam_questions)
    current_app.logger.info('Closing expired session %s (student %s, exam %s)',
                            result.id, result.student_id, exam.id)
    _finalize(result, {
        'submitted_at': now,
        'score': 0,
        'total_marks': total_marks,
        'answers': [],
        'time_taken': max(0, int((deadline - result.start_time).total_seconds())),
        'timed_out': True,
    })


def close_if_expired(result, exam=None, now=None):
    """Close ``result`` with score 0 if it is still open past its deadline.

    Returns True when this call closed it. Read paths call this so an
    abandoned session never stays in progress.
    """
    if result is None or result.is_submitted:
        return False
    exam = exam or result.exam
    now = now or utcnow()
    if not is_expired(result, exam, now):
        return False
    try:
        _close_expired(result, exam, now)
    except ExamSessionError:
        # submitted by a concurrent request in the meantime
        db.session.refresh(result)
        return False
    return True


def close_expired_sessions(results, now=None):
    now = now or utcnow()
    return sum(1 for r in results if close_if_expired(r, now=now))


def _open_session(student, exam, now):
    result = find_session(student.id, exam.id)
    if result is None:
        raise ExamSessionError('exam_not_started', 400)
    if close_if_expired(result, exam, now):
        raise ExamSessionError('time_over', 403, deadline=isoformat(session_deadline(result, exam)))
    if result.is_submitted:
        raise ExamSessionError('already_submitted', 403)
    return result


def start_session(student, exam, now=None):
    """Start (or resume) the student's session for ``exam``.

    Returns ``(result, created)``. Starting again while a session is open is
    idempotent and hands back the same row with the same pinned questions.
    A deactivated exam accepts no new sessions, but sessions already open
    run to their deadline like they do for questions and submit.
    """
    now = now or utcnow()
    existing = find_session(student.id, exam.id)
    if existing is not None:
        if close_if_expired(existing, exam, now):
            raise ExamSessionError('time_over', 403)
        if existing.is_submitted:
            raise ExamSessionError('already_submitted', 403)
        return existing, False

    if not exam.is_active:
        raise ExamSessionError('exam_inactive', 403)
    if exam.start_time and now < exam.start_time:
        raise ExamSessionError('exam_not_open', 403, start_time=isoformat(exam.start_time),
                               server_time=isoformat(now))
    if exam.end_time and now >= exam.end_time:
        raise ExamSessionError('exam_closed', 403, end_time=isoformat(exam.end_time),
                               server_time=isoformat(now))

    bank = (Question.query
            .with_entities(Question.id, Question.marks)
            .filter_by(subject_id=exam.subject_id)
            .order_by(Question.id)
            .all())
    if not bank:
        raise ExamSessionError('no_questions', 404)
    picked = random.sample(bank, min(exam.questions_per_exam, len(bank)))

    result = Result(student_id=student.id, exam_id=exam.id, start_time=now,
                    total_questions=len(picked),
                    total_marks=sum(int(m or 1) for _, m in picked))
    for position, (question_id, marks) in enumerate(picked):
        result.exam_questions.append(ExamQuestion(exam_id=exam.id, question_id=question_id,
                                                  position=position, marks=int(marks or 1)))
    db.session.add(result)
    try:
        db.session.commit()
    except IntegrityError:
        # lost a concurrent start for the same (student, exam)
        db.session.rollback()
        existing = find_session(student.id, exam.id)
        if existing is None:
            raise
        if existing.is_submitted:
            raise ExamSessionError('already_submitted', 403)
        return existing, False
    return result, True


def get_session_questions(student, exam, now=None):
    """Pinned questions of the open session, without answers."""
    now = now or utcnow()
    result = _open_session(student, exam, now)
    questions = []
    for eq in result.exam_questions:
        q = eq.question
        if q is None:
            continue
        questions.append({
            'id': q.id,
            'question_text': q.question_text,
            'option_a': q.option_a,
            'option_b': q.option_b,
            'option_c': q.option_c,
            'option_d': q.option_d,
            'marks': eq.marks,
            'subject': q.subject.name if q.subject else None,
        })
    return result, questions


def submit_session(student, exam, raw_answers, now=None):
    """Grade and close the student's open session. Returns ``(result, summary)``."""
    answers = normalize_answers(raw_answers)
    now = now or utcnow()
    result = _open_session(student, exam, now)

    answer_key = [(eq.question_id, eq.question.correct_answer, eq.marks)
                  for eq in result.exam_questions if eq.question is not None]
    summary = score_answers(answer_key, answers)
    stored = [{'question_id': qid, 'selected_answer': answers[qid]}
              for qid, _, _ in answer_key if qid in answers]

    _finalize(result, {
        'submitted_at': now,
        'score': summary['score'],
        'total_marks': summary['total_marks'],
        'total_questions': summary['total_questions'],
        'answers': stored,
        'time_taken': max(0, int((now - result.start_time).total_seconds())),
        'timed_out': False,
    })
    return result, summary


def result_to_dict(result, include_breakdown=False):
    exam = result.exam
    out = {
        'id': result.id,
        'exam_id': result.exam_id,
        'exam_title': exam.title if exam else None,
        'subject': exam.subject.name if exam and exam.subject else None,
        'student_id': result.student_id,
        'start_time': isoformat(result.start_time),
        'submitted_at': isoformat(result.submitted_at),
        'score': result.score,
        'total_marks': result.total_marks,
        'total_questions': result.total_questions,
        'percentage': compute_percentage(result.score, result.total_marks) if result.score is not None else None,
        'time_taken': result.time_taken,
        'timed_out': result.timed_out,
    }
    if include_breakdown and result.is_submitted:
        selected = {a['question_id']: a['selected_answer'] for a in (result.answers or [])}
        breakdown = []
        for eq in result.exam_questions:
            q = eq.question
            if q is None:
                continue
            answer = selected.get(q.id)
            breakdown.append({
                'question_id': q.id,
                'question_text': q.question_text,
                'option_a': q.option_a,
                'option_b': q.option_b,
                'option_c': q.option_c,
                'option_d': q.option_d,
                'marks': eq.marks,
                'selected_answer': answer,
                'correct_answer': q.correct_answer,
                'is_correct': answer == normalize_letter(q.correct_answer),
            })
        out['questions'] = breakdown
    return out
