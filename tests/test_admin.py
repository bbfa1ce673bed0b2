from models import Exam, ExamQuestion, Log, Question, Result, Student, Subject, db
from tests.base import ApiTestCase

QUESTION = {
    'question_text': 'What is 2 + 2?',
    'option_a': '3', 'option_b': '4', 'option_c': '5', 'option_d': '22',
    'correct_answer': 'b', 'marks': 2, 'difficulty': 'easy',
}


class AdminTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.login_admin()

    def get(self, url, **kwargs):
        return self.client.get(url, headers=self.headers, **kwargs)

    def post(self, url, payload):
        return self.client.post(url, json=payload, headers=self.headers)

    def put(self, url, payload):
        return self.client.put(url, json=payload, headers=self.headers)

    def delete(self, url):
        return self.client.delete(url, headers=self.headers)


class StudentAdminTestCase(AdminTestCase):
    def test_create_list_and_login(self):
        resp = self.post('/api/admin/students', {'student_id': 'S1001', 'name': 'Ana', 'password': 'pw'})
        self.assertEqual(resp.status_code, 201)
        self.assertNotIn('password', resp.get_json()['student'])
        students = self.get('/api/admin/students').get_json()['students']
        self.assertEqual([s['student_id'] for s in students], ['S1001'])
        self.login_student(code='S1001', password='pw')

    def test_create_requires_fields(self):
        resp = self.post('/api/admin/students', {'student_id': 'S1001', 'name': 'Ana'})
        self.assertEqual(resp.status_code, 400)

    def test_duplicate_student_id(self):
        self.make_student(code='S1001')
        resp = self.post('/api/admin/students', {'student_id': 'S1001', 'name': 'Ana', 'password': 'pw'})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()['msg'], 'student_id_exists')

    def test_update_keeps_password_unless_given(self):
        student = self.make_student(code='S1001', password='secret')
        resp = self.put(f'/api/admin/students/{student.id}', {'student_id': 'S1001', 'name': 'Ana Maria'})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()['student']['name'], 'Ana Maria')
        self.login_student(code='S1001', password='secret')

        self.put(f'/api/admin/students/{student.id}', {'student_id': 'S1001', 'name': 'Ana', 'password': 'new'})
        self.login_student(code='S1001', password='new')

    def test_update_missing_student(self):
        resp = self.put('/api/admin/students/42', {'student_id': 'S1', 'name': 'X'})
        self.assertEqual(resp.status_code, 404)

    def test_delete_removes_sessions(self):
        subject = self.make_subject()
        self.make_questions(subject, 3)
        exam = self.make_exam(subject)
        student = self.make_student()
        student_headers = self.login_student()
        self.client.post(f'/api/exams/{exam.id}/start', headers=student_headers)
        self.assertEqual(ExamQuestion.query.count(), 3)

        resp = self.delete(f'/api/admin/students/{student.id}')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Student.query.count(), 0)
        self.assertEqual(Result.query.count(), 0)
        self.assertEqual(ExamQuestion.query.count(), 0)
        self.assertEqual(self.delete(f'/api/admin/students/{student.id}').status_code, 404)


class SubjectAdminTestCase(AdminTestCase):
    def test_create_and_list_with_counts(self):
        resp = self.post('/api/admin/subjects', {'name': 'Biology', 'description': 'Cells'})
        self.assertEqual(resp.status_code, 201)
        subject = db.session.get(Subject, resp.get_json()['subject']['id'])
        self.make_questions(subject, 2)
        self.make_exam(subject, questions_per_exam=2)
        listed = self.get('/api/admin/subjects').get_json()['subjects']
        self.assertEqual(listed[0]['name'], 'Biology')
        self.assertEqual(listed[0]['question_count'], 2)
        self.assertEqual(listed[0]['exam_count'], 1)

    def test_duplicate_name(self):
        self.make_subject('Biology')
        self.assertEqual(self.post('/api/admin/subjects', {'name': 'Biology'}).status_code, 409)

    def test_rename(self):
        subject = self.make_subject('Bio')
        resp = self.put(f'/api/admin/subjects/{subject.id}', {'name': 'Biology'})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(db.session.get(Subject, subject.id).name, 'Biology')

    def test_delete_in_use_subject_is_refused(self):
        subject = self.make_subject()
        self.make_questions(subject, 1)
        resp = self.delete(f'/api/admin/subjects/{subject.id}')
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()['msg'], 'subject_in_use')

    def test_delete_unused_subject(self):
        subject = self.make_subject()
        self.assertEqual(self.delete(f'/api/admin/subjects/{subject.id}').status_code, 200)
        self.assertEqual(Subject.query.count(), 0)


class QuestionAdminTestCase(AdminTestCase):
    def setUp(self):
        super().setUp()
        self.subject = self.make_subject()

    def payload(self, **overrides):
        data = dict(QUESTION, subject_id=self.subject.id)
        data.update(overrides)
        return data

    def test_create_normalizes_answer(self):
        resp = self.post('/api/admin/questions', self.payload())
        self.assertEqual(resp.status_code, 201)
        question = resp.get_json()['question']
        self.assertEqual(question['correct_answer'], 'B')
        self.assertEqual(question['marks'], 2)
        self.assertEqual(question['subject'], 'Mathematics')

    def test_validation(self):
        cases = [
            (self.payload(option_c=''), 400, 'missing_fields'),
            (self.payload(correct_answer='E'), 400, 'bad_correct_answer'),
            (self.payload(difficulty='brutal'), 400, 'bad_difficulty'),
            (self.payload(marks=0), 400, 'bad_marks'),
            (self.payload(marks='many'), 400, 'bad_types'),
            (self.payload(subject_id=999), 404, 'subject_not_found'),
        ]
        for payload, status, msg in cases:
            resp = self.post('/api/admin/questions', payload)
            self.assertEqual(resp.status_code, status, payload)
            self.assertEqual(resp.get_json()['msg'], msg)
        self.assertEqual(Question.query.count(), 0)

    def test_default_marks_and_difficulty(self):
        payload = self.payload()
        del payload['marks']
        del payload['difficulty']
        question = self.post('/api/admin/questions', payload).get_json()['question']
        self.assertEqual(question['marks'], 1)
        self.assertEqual(question['difficulty'], 'medium')

    def test_list_filtered_by_subject(self):
        other = self.make_subject('Physics')
        self.make_questions(self.subject, 2)
        self.make_questions(other, 1)
        self.assertEqual(len(self.get('/api/admin/questions').get_json()['questions']), 3)
        filtered = self.get(f'/api/admin/questions?subject_id={other.id}').get_json()['questions']
        self.assertEqual([q['subject'] for q in filtered], ['Physics'])

    def test_update(self):
        question = self.make_questions(self.subject, 1)[0]
        resp = self.put(f'/api/admin/questions/{question.id}', self.payload(correct_answer='D'))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(db.session.get(Question, question.id).correct_answer, 'D')

    def test_delete_unpins_question(self):
        questions = self.make_questions(self.subject, 3)
        exam = self.make_exam(self.subject)
        self.make_student()
        self.client.post(f'/api/exams/{exam.id}/start', headers=self.login_student())
        resp = self.delete(f'/api/admin/questions/{questions[0].id}')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(ExamQuestion.query.count(), 2)
        self.assertEqual(self.delete(f'/api/admin/questions/{questions[0].id}').status_code, 404)


class ExamAdminTestCase(AdminTestCase):
    def setUp(self):
        super().setUp()
        self.subject = self.make_subject()
        self.make_questions(self.subject, 5)

    def payload(self, **overrides):
        data = {'title': 'Midterm', 'subject_id': self.subject.id, 'duration_minutes': 45,
                'questions_per_exam': 4}
        data.update(overrides)
        return data

    def test_create_defaults(self):
        resp = self.post('/api/admin/exams', self.payload())
        self.assertEqual(resp.status_code, 201)
        exam = resp.get_json()['exam']
        self.assertEqual(exam['total_marks'], 4)
        self.assertTrue(exam['is_active'])
        self.assertEqual(exam['total_questions_in_bank'], 5)
        self.assertIsNone(exam['start_time'])

    def test_create_with_window(self):
        resp = self.post('/api/admin/exams', self.payload(start_time='2026-05-01T10:00:00Z',
                                                          end_time='2026-05-01T13:00:00+02:00'))
        self.assertEqual(resp.status_code, 201)
        exam = resp.get_json()['exam']
        # stored as naive UTC
        self.assertEqual(exam['start_time'], '2026-05-01T10:00:00')
        self.assertEqual(exam['end_time'], '2026-05-01T11:00:00')

    def test_validation(self):
        cases = [
            (self.payload(title=''), 400, 'missing_fields'),
            (self.payload(duration_minutes=0), 400, 'bad_values'),
            (self.payload(questions_per_exam='x'), 400, 'bad_types'),
            (self.payload(start_time='yesterday'), 400, 'bad_types'),
            (self.payload(start_time='2026-05-01T12:00:00', end_time='2026-05-01T11:00:00'), 400, 'bad_time_window'),
            (self.payload(subject_id=999), 404, 'subject_not_found'),
            (self.payload(questions_per_exam=6), 400, 'not_enough_questions'),
        ]
        for payload, status, msg in cases:
            resp = self.post('/api/admin/exams', payload)
            self.assertEqual(resp.status_code, status, payload)
            self.assertEqual(resp.get_json()['msg'], msg)
        self.assertEqual(Exam.query.count(), 0)

    def test_not_enough_questions_reports_bank(self):
        resp = self.post('/api/admin/exams', self.payload(questions_per_exam=9))
        self.assertEqual(resp.get_json()['available'], 5)

    def test_subject_without_questions(self):
        empty = self.make_subject('Art')
        resp = self.post('/api/admin/exams', self.payload(subject_id=empty.id))
        self.assertEqual(resp.get_json()['msg'], 'no_questions_for_subject')

    def test_update_toggles_active(self):
        exam = self.make_exam(self.subject)
        resp = self.put(f'/api/admin/exams/{exam.id}', self.payload(is_active=False))
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(db.session.get(Exam, exam.id).is_active)
        # omitted flag leaves it alone
        self.put(f'/api/admin/exams/{exam.id}', self.payload(title='Final'))
        exam = db.session.get(Exam, exam.id)
        self.assertFalse(exam.is_active)
        self.assertEqual(exam.title, 'Final')

    def test_delete_removes_sessions(self):
        exam = self.make_exam(self.subject)
        self.make_student()
        self.client.post(f'/api/exams/{exam.id}/start', headers=self.login_student())
        self.assertEqual(self.delete(f'/api/admin/exams/{exam.id}').status_code, 200)
        self.assertEqual(Result.query.count(), 0)
        self.assertEqual(ExamQuestion.query.count(), 0)
        self.assertEqual(self.get('/api/admin/exams').get_json()['exams'], [])


class ResultsAdminTestCase(AdminTestCase):
    def setUp(self):
        super().setUp()
        subject = self.make_subject()
        self.make_questions(subject, 4, correct='A')
        self.exam = self.make_exam(subject, questions_per_exam=4)

    def take_exam(self, code, correct):
        self.make_student(code=code, name=f'Student {code}')
        headers = self.login_student(code=code)
        self.client.post(f'/api/exams/{self.exam.id}/start', headers=headers)
        ids = [q['id'] for q in self.client.get(f'/api/exams/{self.exam.id}/questions',
                                                 headers=headers).get_json()['questions']]
        answers = [{'question_id': qid, 'selected_answer': 'A' if i < correct else 'B'}
                   for i, qid in enumerate(ids)]
        self.client.post(f'/api/exams/{self.exam.id}/submit', json={'answers': answers}, headers=headers)

    def test_results_list(self):
        self.take_exam('S1', 4)
        self.take_exam('S2', 1)
        results = self.get('/api/admin/results').get_json()['results']
        self.assertEqual(sorted(r['student_code'] for r in results), ['S1', 'S2'])
        by_code = {r['student_code']: r for r in results}
        self.assertEqual(by_code['S1']['percentage'], 100)
        self.assertEqual(by_code['S2']['percentage'], 25)
        self.assertEqual(by_code['S2']['student_name'], 'Student S2')
        filtered = self.get(f"/api/admin/results?student_id={by_code['S1']['student_id']}").get_json()['results']
        self.assertEqual(len(filtered), 1)

    def test_summary(self):
        self.take_exam('S1', 4)
        self.take_exam('S2', 1)
        self.make_student(code='S3')
        self.client.post(f'/api/exams/{self.exam.id}/start', headers=self.login_student(code='S3'))
        summary = self.get(f'/api/admin/exams/{self.exam.id}/summary').get_json()['summary']
        self.assertEqual(summary['attempts'], 3)
        self.assertEqual(summary['submitted'], 2)
        self.assertEqual(summary['in_progress'], 1)
        self.assertEqual(summary['average_percentage'], 62.5)
        self.assertEqual(summary['max_percentage'], 100)
        self.assertEqual(summary['min_percentage'], 25)

    def test_summary_without_results(self):
        summary = self.get(f'/api/admin/exams/{self.exam.id}/summary').get_json()['summary']
        self.assertEqual(summary['attempts'], 0)
        self.assertIsNone(summary['average_percentage'])

    def test_audit_log(self):
        self.take_exam('S1', 2)
        logs = self.get('/api/admin/logs?event_type=submit_exam').get_json()['logs']
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0]['username'], 'S1')
        self.assertEqual(logs[0]['meta']['score'], 2)
        self.assertTrue(Log.query.filter_by(event_type='exam_start').count() == 1)
