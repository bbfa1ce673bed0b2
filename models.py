from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

OPTION_LETTERS = ('A', 'B', 'C', 'D')
DIFFICULTIES = ('easy', 'medium', 'hard')


def utcnow():
    """Naive UTC timestamp; all stored datetimes are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Student(db.Model):
    __tablename__ = 'students'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.String(64), unique=True, nullable=False)  # university id, used to log in
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(200), nullable=True)
    password_hash = db.Column(db.String(256), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    results = db.relationship('Result', back_populates='student', cascade='all, delete')

    def to_dict(self):
        return {
            'id': self.id,
            'student_id': self.student_id,
            'name': self.name,
            'email': self.email or '',
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Admin(db.Model):
    __tablename__ = 'admins'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='admin')
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'full_name': self.full_name,
            'role': self.role,
        }


class Subject(db.Model):
    __tablename__ = 'subjects'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    questions = db.relationship('Question', back_populates='subject')
    exams = db.relationship('Exam', back_populates='subject')


class Question(db.Model):
    __tablename__ = 'questions'
    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, db.ForeignKey('subjects.id'), nullable=False, index=True)
    question_text = db.Column(db.Text, nullable=False)
    option_a = db.Column(db.Text, nullable=False)
    option_b = db.Column(db.Text, nullable=False)
    option_c = db.Column(db.Text, nullable=False)
    option_d = db.Column(db.Text, nullable=False)
    correct_answer = db.Column(db.String(1), nullable=False)  # 'A','B','C','D'
    marks = db.Column(db.Integer, nullable=False, default=1)
    difficulty = db.Column(db.String(10), nullable=False, default='medium')
    created_at = db.Column(db.DateTime, default=utcnow)

    subject = db.relationship('Subject', back_populates='questions')

    def to_dict(self, with_answer=True):
        out = {
            'id': self.id,
            'subject_id': self.subject_id,
            'subject': self.subject.name if self.subject else None,
            'question_text': self.question_text,
            'option_a': self.option_a,
            'option_b': self.option_b,
            'option_c': self.option_c,
            'option_d': self.option_d,
            'marks': self.marks,
            'difficulty': self.difficulty,
        }
        if with_answer:
            out['correct_answer'] = self.correct_answer
        return out


class Exam(db.Model):
    __tablename__ = 'exams'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    subject_id = db.Column(db.Integer, db.ForeignKey('subjects.id'), nullable=False, index=True)
    duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    questions_per_exam = db.Column(db.Integer, nullable=False, default=10)
    total_marks = db.Column(db.Integer, nullable=False, default=0)
    start_time = db.Column(db.DateTime, nullable=True)
    end_time = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    subject = db.relationship('Subject', back_populates='exams')
    results = db.relationship('Result', back_populates='exam', cascade='all, delete')

    def bank_size(self):
        return Question.query.filter_by(subject_id=self.subject_id).count()

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'subject_id': self.subject_id,
            'subject': self.subject.name if self.subject else None,
            'duration_minutes': self.duration_minutes,
            'questions_per_exam': self.questions_per_exam,
            'total_marks': self.total_marks,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Result(db.Model):
    """One exam session: the single attempt of a student at an exam."""
    __tablename__ = 'results'
    __table_args__ = (
        db.UniqueConstraint('student_id', 'exam_id', name='uq_results_student_exam'),
    )
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    exam_id = db.Column(db.Integer, db.ForeignKey('exams.id'), nullable=False, index=True)
    start_time = db.Column(db.DateTime, nullable=False, default=utcnow)
    submitted_at = db.Column(db.DateTime, nullable=True)
    score = db.Column(db.Integer, nullable=True)
    total_marks = db.Column(db.Integer, nullable=True)
    total_questions = db.Column(db.Integer, nullable=False, default=0)
    answers = db.Column(db.JSON, nullable=True)  # [{question_id, selected_answer}]
    time_taken = db.Column(db.Integer, nullable=True)  # seconds
    timed_out = db.Column(db.Boolean, nullable=False, default=False)

    student = db.relationship('Student', back_populates='results')
    exam = db.relationship('Exam', back_populates='results')
    exam_questions = db.relationship('ExamQuestion', back_populates='result',
                                     cascade='all, delete-orphan',
                                     order_by='ExamQuestion.position')

    @property
    def is_submitted(self):
        return self.submitted_at is not None


class ExamQuestion(db.Model):
    """A question pinned to one exam session, in presentation order."""
    __tablename__ = 'exam_questions'
    __table_args__ = (
        db.UniqueConstraint('result_id', 'question_id', name='uq_exam_questions_result_question'),
    )
    id = db.Column(db.Integer, primary_key=True)
    result_id = db.Column(db.Integer, db.ForeignKey('results.id'), nullable=False, index=True)
    exam_id = db.Column(db.Integer, db.ForeignKey('exams.id'), nullable=False)
    question_id = db.Column(db.Integer, db.ForeignKey('questions.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    marks = db.Column(db.Integer, nullable=False, default=1)

    result = db.relationship('Result', back_populates='exam_questions')
    question = db.relationship('Question')


class Log(db.Model):
    __tablename__ = 'logs'
    id = db.Column(db.Integer, primary_key=True)
    who_user_id = db.Column(db.Integer, nullable=True)  # optional id of the actor
    username = db.Column(db.String(120), nullable=True)
    role = db.Column(db.String(30), nullable=True)
    event_type = db.Column(db.String(120), nullable=False)
    meta = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'who_user_id': self.who_user_id,
            'username': self.username,
            'role': self.role,
            'event_type': self.event_type,
            'meta': self.meta,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
