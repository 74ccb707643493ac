import importlib
import io
import os
from datetime import date

import pytest

from app_models import Attendance, MidDayMeal, User, grade_for
from conftest import ADMIN


def _login_student(app, student_id, password='student123'):
    response = app.test_client().post('/api/auth/login', json={'student_id': student_id, 'password': password})
    assert response.status_code == 200, response.get_json()
    return {'Authorization': f"Bearer {response.get_json()['token']}"}


# Health and auth
def test_health_reports_database_ok(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()['database'] == 'ok'


def test_gunicorn_settings_follow_environment(monkeypatch):
    monkeypatch.setenv('PORT', '8080')
    monkeypatch.setenv('WEB_CONCURRENCY', '3')
    monkeypatch.setenv('APP_ENV', 'production')
    monkeypatch.delenv('GUNICORN_TIMEOUT', raising=False)
    settings = importlib.reload(importlib.import_module('gunicorn_config'))
    assert settings.bind == '0.0.0.0:8080'
    assert settings.workers == 3
    assert settings.timeout == 120
    assert settings.reload is False


def test_login_returns_token_and_user(client):
    response = client.post('/api/auth/login', json=ADMIN)
    body = response.get_json()
    assert response.status_code == 200
    assert body['token']
    assert body['user']['role'] == 'admin'
    assert 'password_hash' not in body['user']


def test_login_with_wrong_password_is_rejected(client):
    response = client.post('/api/auth/login', json={'email': ADMIN['email'], 'password': 'nope'})
    assert response.status_code == 401
    assert response.get_json()['success'] is False


def test_login_requires_an_identifier(client):
    response = client.post('/api/auth/login', json={'password': 'whatever'})
    assert response.status_code == 400
    assert 'email' in response.get_json()['errors']


def test_repeated_failed_logins_are_throttled(app):
    client = app.test_client()
    for _ in range(5):
        assert client.post('/api/auth/login', json={'email': ADMIN['email'], 'password': 'nope'}).status_code == 401
    response = client.post('/api/auth/login', json=ADMIN)
    assert response.status_code == 429
    assert response.get_json()['error'].startswith('Too many login attempts')


def test_successful_logins_do_not_count_towards_the_limit(app):
    client = app.test_client()
    for _ in range(8):
        assert client.post('/api/auth/login', json=ADMIN).status_code == 200


def test_me_with_bearer_token(client, teacher_headers):
    response = client.get('/api/auth/me', headers=teacher_headers)
    assert response.status_code == 200
    assert response.get_json()['data']['name'] == 'Rina Das'


def test_invalid_token_is_rejected(client):
    response = client.get('/api/auth/me', headers={'Authorization': 'Bearer not-a-token'})
    assert response.status_code == 401


def test_cookie_session_writes_need_csrf_token(app):
    client = app.test_client()
    token = client.post('/api/auth/login', json=ADMIN).get_json()['csrf_token']
    payload = {'title': 'Sports Day', 'content': 'Friday on the main ground'}

    assert client.get('/api/auth/me').status_code == 200
    rejected = client.post('/api/announcements', json=payload)
    assert rejected.status_code == 400
    accepted = client.post('/api/announcements', json=payload, headers={'X-CSRFToken': token})
    assert accepted.status_code == 201


def test_logout_ends_cookie_session(app):
    client = app.test_client()
    client.post('/api/auth/login', json=ADMIN)
    client.post('/api/auth/logout')
    assert client.get('/api/auth/me').status_code == 401


def test_password_change(app, client, teacher_headers):
    response = client.put('/api/auth/password', json={'current_password': 'teacherpass', 'new_password': 'new-secret-1'},
                          headers=teacher_headers)
    assert response.status_code == 200
    login = app.test_client().post('/api/auth/login', json={'email': 'teacher@baliadanga.test', 'password': 'new-secret-1'})
    assert login.status_code == 200


# Generic collections
def test_unauthenticated_write_is_rejected(client):
    response = client.post('/api/announcements', json={'title': 'x', 'content': 'y'})
    assert response.status_code == 401


def test_wrong_role_is_forbidden(client, teacher_headers):
    response = client.post('/api/staff', json={'employee_id': 'E1', 'full_name': 'A', 'email': 'a@b.in',
                                               'department': 'Science'}, headers=teacher_headers)
    assert response.status_code == 403


def test_invalid_payload_returns_field_errors(client, admin_headers):
    response = client.post('/api/announcements', json={'content': 'No title'}, headers=admin_headers)
    body = response.get_json()
    assert response.status_code == 400
    assert 'title' in body['errors']


def test_invalid_choice_is_rejected(client, admin_headers):
    response = client.post('/api/events', json={'title': 'Fair', 'date': '2024-12-01', 'category': 'Party'},
                           headers=admin_headers)
    assert response.status_code == 400
    assert 'category' in response.get_json()['errors']


def test_unknown_id_returns_404(client, admin_headers):
    assert client.get('/api/events/999').status_code == 404
    assert client.put('/api/events/999', json={'title': 'x'}, headers=admin_headers).status_code == 404
    assert client.delete('/api/events/999', headers=admin_headers).status_code == 404


def test_announcement_lifecycle(client, admin_headers):
    created = client.post('/api/announcements', json={'title': 'Exam Schedule', 'content': 'Starts Monday',
                                                      'category': 'Academic'}, headers=admin_headers)
    assert created.status_code == 201
    item = created.get_json()['data']
    assert item['author_name'] == 'Head Admin'
    assert item['publish_date'] == date.today().isoformat()

    updated = client.put(f"/api/announcements/{item['id']}", json={'title': 'Exam Schedule (revised)'},
                         headers=admin_headers)
    assert updated.status_code == 200
    assert updated.get_json()['data']['title'] == 'Exam Schedule (revised)'
    assert updated.get_json()['data']['content'] == 'Starts Monday'

    listing = client.get('/api/announcements').get_json()
    assert listing['count'] == 1
    assert listing['data'][0]['id'] == item['id']

    assert client.delete(f"/api/announcements/{item['id']}", headers=admin_headers).status_code == 200
    assert client.get('/api/announcements').get_json()['count'] == 0


def test_public_announcements_hide_inactive_and_expired(client, admin_headers):
    client.post('/api/announcements', json={'title': 'Live', 'content': 'a'}, headers=admin_headers)
    client.post('/api/announcements', json={'title': 'Hidden', 'content': 'b', 'is_active': False},
                headers=admin_headers)
    client.post('/api/announcements', json={'title': 'Old', 'content': 'c', 'publish_date': '2020-01-01',
                                            'expiry_date': '2020-02-01'}, headers=admin_headers)

    public = client.get('/api/announcements').get_json()
    assert [item['title'] for item in public['data']] == ['Live']
    assert client.get('/api/announcements', headers=admin_headers).get_json()['count'] == 3


def test_announcements_can_only_be_changed_by_author_or_admin(client, admin_headers, teacher_headers,
                                                              other_teacher_headers):
    item = client.post('/api/announcements', json={'title': 'Homework', 'content': 'Read ch. 3'},
                       headers=teacher_headers).get_json()['data']

    forbidden = client.put(f"/api/announcements/{item['id']}", json={'title': 'Hijacked'},
                           headers=other_teacher_headers)
    assert forbidden.status_code == 403
    assert client.delete(f"/api/announcements/{item['id']}", headers=other_teacher_headers).status_code == 403

    assert client.put(f"/api/announcements/{item['id']}", json={'title': 'Read ch. 4'},
                      headers=admin_headers).status_code == 200
    assert client.delete(f"/api/announcements/{item['id']}", headers=teacher_headers).status_code == 200


def test_duplicate_fee_structure_is_a_conflict(client, admin_headers):
    payload = {'name': 'Session Fee', 'current_class': 'V', 'amount': 1200, 'academic_year': '2024'}
    assert client.post('/api/fee-structures', json=payload, headers=admin_headers).status_code == 201
    response = client.post('/api/fee-structures', json=payload, headers=admin_headers)
    assert response.status_code == 409
    assert response.get_json()['success'] is False


def test_collection_filters_by_query_param(client, admin_headers):
    for title, category in (('Match', 'Sports'), ('Drama', 'Cultural'), ('Quiz', 'Academic')):
        client.post('/api/events', json={'title': title, 'date': '2024-11-05', 'category': category},
                    headers=admin_headers)
    body = client.get('/api/events?category=Sports').get_json()
    assert body['count'] == 1
    assert body['data'][0]['title'] == 'Match'
    assert client.get('/api/events?category=all').get_json()['count'] == 3


def test_admissions_accept_public_applications(client, admin_headers):
    application = {
        'student_name': 'Riya Sen', 'email': 'riya@example.in', 'phone_number': '9876543210',
        'date_of_birth': '2014-03-02', 'gender': 'Female', 'address': 'Baliadanga',
        'guardian_name': 'Mala Sen', 'guardian_phone': '9876500000', 'class_name': 'V',
    }
    response = client.post('/api/admissions', json=application)
    assert response.status_code == 201
    assert response.get_json()['data']['status'] == 'Pending'
    assert client.get('/api/admissions').status_code == 401
    assert client.get('/api/admissions', headers=admin_headers).get_json()['count'] == 1


def test_staff_record_creates_and_removes_login(app, client, admin_headers):
    response = client.post('/api/staff', json={'employee_id': 'EMP-01', 'full_name': 'Sima Paul',
                                               'email': 'Sima@Baliadanga.test', 'department': 'Science',
                                               'position': 'Teacher', 'subjects': ['Physics', 'Chemistry']},
                           headers=admin_headers)
    assert response.status_code == 201
    staff = response.get_json()['data']
    assert staff['subjects'] == ['Physics', 'Chemistry']

    login = app.test_client().post('/api/auth/login', json={'email': 'sima@baliadanga.test', 'password': 'staff1234'})
    assert login.status_code == 200
    assert login.get_json()['user']['role'] == 'teacher'

    assert client.delete(f"/api/staff/{staff['id']}", headers=admin_headers).status_code == 200
    with app.app_context():
        assert User.query.filter_by(email='sima@baliadanga.test').first() is None


def test_homework_is_scoped_to_the_students_class(app, client, teacher_headers, make_student):
    student = make_student(current_class='V', section='A')
    for class_name in ('V', 'VI'):
        response = client.post('/api/homework', json={'title': f'Essay {class_name}', 'description': 'My village',
                                                      'class_name': class_name, 'section': 'A',
                                                      'subject': 'English', 'due_date': '2024-09-10'},
                               headers=teacher_headers)
        assert response.status_code == 201

    student_headers = _login_student(app, student['student_id'])
    visible = client.get('/api/homework', headers=student_headers).get_json()
    assert [item['title'] for item in visible['data']] == ['Essay V']
    assert client.get('/api/homework', headers=teacher_headers).get_json()['count'] == 2


# Students
def test_student_record_creates_login_with_default_password(app, make_student):
    student = make_student(student_id='ST-2024-100')
    assert student['user_id'] is not None

    response = app.test_client().post('/api/auth/login', json={'student_id': 'ST-2024-100', 'password': 'student123'})
    body = response.get_json()
    assert response.status_code == 200
    assert body['user']['role'] == 'student'
    assert body['user']['student_profile']['id'] == student['id']


def test_students_filter_by_class_name(client, admin_headers, make_student):
    make_student(current_class='V')
    make_student(current_class='VI')
    make_student(current_class='VI')

    assert client.get('/api/students?class_name=VI', headers=admin_headers).get_json()['count'] == 2
    assert client.get('/api/students?class_name=all', headers=admin_headers).get_json()['count'] == 3
    assert client.get('/api/students').status_code == 401


def test_bulk_student_import_reports_bad_rows(client, admin_headers):
    base = {'roll_number': '1', 'current_class': 'VII', 'guardian_name': 'G', 'guardian_phone': '9000000001'}
    rows = [
        dict(base, student_id='ST-B-1', name='First'),
        dict(base, student_id='ST-B-2'),
        dict(base, student_id='ST-B-1', name='Duplicate'),
    ]
    response = client.post('/api/students/bulk', json={'students': rows}, headers=admin_headers)
    body = response.get_json()
    assert response.status_code == 201
    assert body['count'] == 1
    assert [error['row'] for error in body['errors']] == [1, 2]
    assert 'name' in body['errors'][0]['errors']


# Uploads
def test_upload_rejects_disallowed_extension(client, admin_headers):
    response = client.post('/api/upload', data={'file': (io.BytesIO(b'MZ'), 'tool.exe')},
                           headers=admin_headers, content_type='multipart/form-data')
    assert response.status_code == 400


def test_upload_rejects_oversize_body(app, client, admin_headers):
    app.config['MAX_CONTENT_LENGTH'] = 1024
    response = client.post('/api/upload', data={'file': (io.BytesIO(b'x' * 4096), 'big.pdf')},
                           headers=admin_headers, content_type='multipart/form-data')
    assert response.status_code == 413
    assert response.get_json()['success'] is False


def test_upload_requires_staff(client):
    response = client.post('/api/upload', data={'file': (io.BytesIO(b'%PDF'), 'a.pdf')},
                           content_type='multipart/form-data')
    assert response.status_code == 401


def test_deleting_resource_removes_stored_file(app, client, admin_headers):
    upload = client.post('/api/upload', data={'file': (io.BytesIO(b'%PDF-1.4 rules'), 'policy.pdf'),
                                              'folder': 'resources'},
                         headers=admin_headers, content_type='multipart/form-data')
    assert upload.status_code == 201
    stored = upload.get_json()
    assert stored['filename'] == 'policy.pdf'
    assert stored['file_id'].startswith('resources/')
    assert client.get(stored['url']).status_code == 200

    resource = client.post('/api/resources', json={
        'title': 'Admission Policy', 'description': 'Rules for admission', 'type': 'policy',
        'file_path': stored['url'], 'file_name': stored['filename'], 'file_id': stored['file_id'],
        'file_size': stored['size'],
    }, headers=admin_headers).get_json()['data']

    path = os.path.join(app.config['UPLOAD_FOLDER'], stored['file_id'])
    assert os.path.isfile(path)
    assert client.delete(f"/api/resources/{resource['id']}", headers=admin_headers).status_code == 200
    assert not os.path.exists(path)


def _upload(client, headers, name, content=b'%PDF-1.4 notice', folder='announcements'):
    response = client.post('/api/upload', data={'file': (io.BytesIO(content), name), 'folder': folder},
                           headers=headers, content_type='multipart/form-data')
    assert response.status_code == 201, response.get_json()
    stored = response.get_json()
    return {key: stored[key] for key in ('url', 'file_id', 'filename', 'size', 'mimetype')}


def test_announcement_attachments_follow_the_announcement(app, client, admin_headers):
    notice, circular = _upload(client, admin_headers, 'notice.pdf'), _upload(client, admin_headers, 'circular.pdf')
    created = client.post('/api/announcements', json={'title': 'Notice', 'content': 'See attached',
                                                      'attachments': [notice, circular]},
                          headers=admin_headers).get_json()['data']
    assert [item['file_id'] for item in created['attachments']] == [notice['file_id'], circular['file_id']]

    def stored(reference):
        return os.path.isfile(os.path.join(app.config['UPLOAD_FOLDER'], reference['file_id']))

    response = client.put(f"/api/announcements/{created['id']}", json={'attachments': [circular]},
                          headers=admin_headers)
    assert response.status_code == 200
    assert not stored(notice)
    assert stored(circular)

    assert client.delete(f"/api/announcements/{created['id']}", headers=admin_headers).status_code == 200
    assert not stored(circular)


def test_homework_attachments_are_removed_with_the_homework(app, client, teacher_headers):
    sheet = _upload(client, teacher_headers, 'worksheet.pdf', folder='homework')
    homework = client.post('/api/homework', json={
        'title': 'Fractions', 'description': 'Exercise 4.2', 'class_name': 'V', 'section': 'A',
        'subject': 'Mathematics', 'due_date': '2024-07-10', 'attachments': [sheet],
    }, headers=teacher_headers).get_json()['data']

    path = os.path.join(app.config['UPLOAD_FOLDER'], sheet['file_id'])
    assert os.path.isfile(path)
    assert client.delete(f"/api/homework/{homework['id']}", headers=teacher_headers).status_code == 200
    assert not os.path.exists(path)


def test_replacing_staff_photo_removes_the_old_file(app, client, admin_headers):
    old = _upload(client, admin_headers, 'old.jpg', b'old photo', folder='staff')
    new = _upload(client, admin_headers, 'new.jpg', b'new photo', folder='staff')
    staff = client.post('/api/staff', json={'employee_id': 'EMP-07', 'full_name': 'Tapas Ghosh',
                                            'email': 'tapas@baliadanga.test', 'department': 'Arts',
                                            'profile_image': old['url']},
                        headers=admin_headers).get_json()['data']

    def stored(reference):
        return os.path.isfile(os.path.join(app.config['UPLOAD_FOLDER'], reference['file_id']))

    client.put(f"/api/staff/{staff['id']}", json={'profile_image': new['url']}, headers=admin_headers)
    assert not stored(old)
    assert stored(new)

    client.delete(f"/api/staff/{staff['id']}", headers=admin_headers)
    assert not stored(new)


# Results
@pytest.mark.parametrize('percentage, grade', [
    (95, 'A+'), (90, 'A+'), (85, 'A'), (72.5, 'B+'), (60, 'B'), (55, 'C'), (40, 'D'), (39.99, 'F'), (0, 'F'),
])
def test_grade_bands(percentage, grade):
    assert grade_for(percentage) == grade


def test_marks_publish_ranks_and_public_lookup(client, admin_headers, teacher_headers, make_student, make_exam):
    first, second, third = make_student(roll_number='1'), make_student(roll_number='2'), make_student(roll_number='3')
    exam = make_exam()

    entered = client.post('/api/results/marks', json={'student_id': first['id'], 'exam_id': exam['id'],
                                                      'marks': {'Bengali': 80, 'Mathematics': 90}},
                          headers=teacher_headers)
    assert entered.status_code == 201
    result = entered.get_json()['data']
    assert result['total_obtained'] == 170
    assert result['percentage'] == 85.0
    assert result['grade'] == 'A'

    bulk = client.post('/api/results/bulk-marks', json={
        'exam_id': exam['id'], 'subject': 'Mathematics',
        'entries': [{'student_id': second['id'], 'mark': 95}, {'student_id': third['id'], 'mark': 20},
                    {'student_id': 9999, 'mark': 50}],
    }, headers=teacher_headers).get_json()
    assert (bulk['created'], bulk['updated'], len(bulk['errors'])) == (2, 0, 1)

    # Nothing is public before publishing
    assert client.get('/api/results/public?roll_number=1').get_json()['results'] == []

    assert client.post(f"/api/results/publish/{exam['id']}", headers=teacher_headers).status_code == 403
    published = client.post(f"/api/results/publish/{exam['id']}", headers=admin_headers)
    assert published.get_json()['count'] == 3

    ranked = client.get(f"/api/results/exam/{exam['id']}", headers=teacher_headers).get_json()['data']
    assert [(row['student']['id'], row['rank']) for row in ranked] == [(first['id'], 1), (second['id'], 2), (third['id'], 3)]
    assert [row['grade'] for row in ranked] == ['A', 'D', 'F']

    public = client.get('/api/results/public?roll_number=1').get_json()
    assert public['student']['name'] == first['name']
    assert len(public['results']) == 1
    assert public['results'][0]['exam']['name'] == 'Annual Exam 2024'


def test_marks_are_checked_against_exam_subjects(client, teacher_headers, make_student, make_exam):
    student, exam = make_student(), make_exam()
    over = client.post('/api/results/marks', json={'student_id': student['id'], 'exam_id': exam['id'],
                                                   'marks': {'Bengali': 101}}, headers=teacher_headers)
    assert over.status_code == 400
    unknown = client.post('/api/results/marks', json={'student_id': student['id'], 'exam_id': exam['id'],
                                                      'marks': {'Sanskrit': 50}}, headers=teacher_headers)
    assert unknown.status_code == 400


def test_marks_for_second_subject_merge_into_existing_result(client, teacher_headers, make_student, make_exam):
    student, exam = make_student(), make_exam()
    client.post('/api/results/marks', json={'student_id': student['id'], 'exam_id': exam['id'],
                                            'marks': {'Bengali': 60}}, headers=teacher_headers)
    response = client.post('/api/results/marks', json={'student_id': student['id'], 'exam_id': exam['id'],
                                                       'marks': {'Mathematics': 40}}, headers=teacher_headers)
    assert response.status_code == 200
    result = response.get_json()['data']
    assert result['marks'] == {'Bengali': 60.0, 'Mathematics': 40.0}
    assert result['percentage'] == 50.0


def test_public_lookup_needs_class_when_roll_numbers_collide(client, make_student):
    make_student(roll_number='7', current_class='V')
    other = make_student(roll_number='7', current_class='VI')

    assert client.get('/api/results/public').status_code == 400
    assert client.get('/api/results/public?roll_number=7').status_code == 400
    resolved = client.get('/api/results/public?roll_number=7&class_name=VI')
    assert resolved.status_code == 200
    assert resolved.get_json()['student']['name'] == other['name']
    assert client.get('/api/results/public?roll_number=404').status_code == 404


def test_student_sees_own_published_results_and_report_card(app, client, admin_headers, make_student, make_exam):
    student, exam = make_student(), make_exam()
    client.post('/api/results/marks', json={'student_id': student['id'], 'exam_id': exam['id'],
                                            'marks': {'Bengali': 50, 'Mathematics': 70}}, headers=admin_headers)
    student_headers = _login_student(app, student['student_id'])

    assert client.get('/api/results/my', headers=student_headers).get_json()['count'] == 0
    client.post(f"/api/results/publish/{exam['id']}", headers=admin_headers)
    assert client.get('/api/results/my', headers=student_headers).get_json()['count'] == 1

    card = client.get(f"/api/results/report-card/{student['id']}/{exam['id']}", headers=admin_headers).get_json()['data']
    assert card['result']['full_marks'] == 200
    assert card['result']['rank'] == 1
    assert client.get(f"/api/results/report-card/{student['id']}/{exam['id']}",
                      headers=student_headers).status_code == 403


# Promotion
def test_promotion_check_uses_thirty_percent_threshold(client, admin_headers, make_student, make_exam):
    passing, failing = make_student(), make_student()
    exam = make_exam()
    for student, marks in ((passing, {'Bengali': 40, 'Mathematics': 35}), (failing, {'Bengali': 20, 'Mathematics': 20})):
        client.post('/api/results/marks', json={'student_id': student['id'], 'exam_id': exam['id'], 'marks': marks},
                    headers=admin_headers)

    assert client.get(f"/api/promotion/check/{passing['student_id']}", headers=admin_headers).get_json()['status'] == 'PASSED'
    failed = client.get(f"/api/promotion/check/{failing['student_id']}", headers=admin_headers).get_json()
    assert failed['eligible'] is False
    assert failed['status'] == 'FAILED'


def test_promotion_archives_class_and_assigns_next_roll(client, admin_headers, make_student):
    make_student(current_class='VI', roll_number='1')
    make_student(current_class='VI', roll_number='2')
    student = make_student(current_class='V', roll_number='5', section='B')

    response = client.post('/api/promotion/promote', json={'student_id': student['student_id'], 'new_class': 'VI',
                                                           'payment_amount': 500}, headers=admin_headers)
    body = response.get_json()
    assert response.status_code == 200
    assert body['slip_data']['receipt_no'].startswith(f'SLIP-{date.today().year}-')
    assert body['slip_data']['new_roll'] == '3'
    assert body['data']['current_class'] == 'VI'
    assert body['data']['section'] == 'A'
    assert body['data']['previous_classes'][0]['class_name'] == 'V'
    assert body['data']['previous_classes'][0]['roll_number'] == '5'

    payments = client.get(f"/api/fees/student/{student['id']}", headers=admin_headers).get_json()
    assert payments['count'] == 1
    assert payments['data'][0]['amount_paid'] == 500


def test_promotion_rejects_same_class(client, admin_headers, make_student):
    student = make_student(current_class='V')
    response = client.post('/api/promotion/promote', json={'student_id': student['student_id'], 'new_class': 'V'},
                           headers=admin_headers)
    assert response.status_code == 400


# Attendance
def test_attendance_is_one_record_per_student_per_day(app, client, teacher_headers, make_student):
    first, second = make_student(), make_student()
    day = '2024-07-01'
    marked = client.post('/api/attendance', json=[
        {'student_id': first['id'], 'date': day, 'status': 'Present'},
        {'student_id': second['id'], 'date': day, 'status': 'Absent'},
        {'student_id': 9999, 'date': day},
    ], headers=teacher_headers).get_json()
    assert marked['results']['success'] == 2
    assert marked['results']['failed'] == 1

    client.post('/api/attendance', json={'student_code': second['student_id'], 'date': day, 'status': 'Late'},
                headers=teacher_headers)

    register = client.get(f'/api/attendance/class?class_name=V&date={day}', headers=teacher_headers).get_json()
    assert {row['student']['id']: row['status'] for row in register['data']} == {first['id']: 'Present',
                                                                                 second['id']: 'Late'}
    with app.app_context():
        assert Attendance.query.count() == 2


def test_bad_date_in_batch_attendance_fails_only_that_row(app, client, teacher_headers, make_student):
    first, second = make_student(), make_student()
    response = client.post('/api/attendance', json=[
        {'student_id': first['id'], 'date': '2024-07-01', 'status': 'Present'},
        {'student_id': second['id'], 'date': '01/07/2024', 'status': 'Present'},
    ], headers=teacher_headers)
    assert response.status_code == 200
    results = response.get_json()['results']
    assert results['success'] == 1
    assert results['failed'] == 1
    assert results['errors'] == [f"{second['student_id']}: Invalid date: 01/07/2024"]
    with app.app_context():
        assert Attendance.query.count() == 1


def test_class_register_requires_class_and_date(client, teacher_headers):
    assert client.get('/api/attendance/class?class_name=V', headers=teacher_headers).status_code == 400


def test_qr_scan_marks_present_once(client, teacher_headers, make_student):
    student = make_student()
    first = client.post('/api/attendance/scan', json={'student_code': student['student_id']}, headers=teacher_headers)
    assert first.status_code == 201
    assert first.get_json()['data']['method'] == 'QR'

    again = client.post('/api/attendance/scan', json={'student_code': student['student_id']}, headers=teacher_headers)
    assert again.status_code == 200
    assert again.get_json()['already_marked'] is True

    unknown = client.post('/api/attendance/scan', json={'student_code': 'ST-NOPE'}, headers=teacher_headers)
    assert unknown.status_code == 404

    history = client.get(f"/api/attendance/student/{student['id']}", headers=teacher_headers).get_json()
    assert history['count'] == 1
    assert history['summary']['Present'] == 1


def test_students_cannot_read_other_students_attendance(app, client, make_student):
    own, other = make_student(), make_student()
    student_headers = _login_student(app, own['student_id'])
    assert client.get(f"/api/attendance/student/{own['id']}", headers=student_headers).status_code == 200
    assert client.get(f"/api/attendance/student/{other['id']}", headers=student_headers).status_code == 403


# Mid-day meals
def test_meal_marking_upserts_and_summary_totals(app, client, teacher_headers):
    day = '2024-07-02'
    first = client.post('/api/mid-day-meal', json={'date': day, 'class_name': 'V', 'section': 'A',
                                                   'student_ids': ['ST-1', 'ST-2', 'ST-3']}, headers=teacher_headers)
    assert first.status_code == 201
    assert first.get_json()['data']['total_count'] == 3

    again = client.post('/api/mid-day-meal', json={'date': day, 'class_name': 'V', 'section': 'A',
                                                   'student_ids': ['ST-1', 'ST-2']}, headers=teacher_headers)
    assert again.status_code == 200
    assert again.get_json()['data']['total_count'] == 2

    client.post('/api/mid-day-meal', json={'date': day, 'class_name': 'V', 'section': 'B', 'total_count': 10},
                headers=teacher_headers)
    client.post('/api/mid-day-meal', json={'date': day, 'class_name': 'VI', 'section': 'A', 'total_count': 7},
                headers=teacher_headers)

    with app.app_context():
        assert MidDayMeal.query.filter_by(class_name='V', section='A').count() == 1

    summary = client.get(f'/api/mid-day-meal/summary?date={day}', headers=teacher_headers).get_json()['data']
    classes = summary['classes']
    assert [entry['class_name'] for entry in classes] == ['V', 'VI']
    assert classes[0]['sections'] == {'A': 2, 'B': 10}
    assert classes[0]['class_total'] == 12
    assert summary['grand_total'] == 19 == sum(entry['class_total'] for entry in classes)

    report = client.get(f'/api/mid-day-meal?date={day}&class_name=V', headers=teacher_headers).get_json()
    assert report['count'] == 2


def test_meal_marking_needs_a_count(client, teacher_headers):
    response = client.post('/api/mid-day-meal', json={'class_name': 'V', 'section': 'A'}, headers=teacher_headers)
    assert response.status_code == 400


# Fees and dashboard
def test_fee_payment_receipt_and_dues(client, admin_headers, make_student):
    student = make_student(current_class='V')
    year = str(date.today().year)
    for name, class_name, amount in (('Session Fee', 'V', 1200), ('Development Fee', 'ALL', 300),
                                     ('Session Fee', 'VI', 1500)):
        response = client.post('/api/fee-structures', json={'name': name, 'current_class': class_name,
                                                             'amount': amount, 'academic_year': year},
                               headers=admin_headers)
        assert response.status_code == 201

    paid = client.post('/api/fees/pay', json={'student_id': student['id'], 'amount_paid': 1000,
                                              'payment_method': 'UPI'}, headers=admin_headers)
    assert paid.status_code == 201
    assert paid.get_json()['data']['receipt_number'].startswith(f'REC-{year}-')

    dues = client.get(f"/api/fees/dues/{student['student_id']}", headers=admin_headers).get_json()['data']
    assert dues['total_fees'] == 1500
    assert dues['total_paid'] == 1000
    assert dues['balance'] == 500
    assert len(dues['details']) == 2


def test_fee_payment_needs_positive_amount(client, admin_headers, make_student):
    student = make_student()
    response = client.post('/api/fees/pay', json={'student_id': student['id'], 'amount_paid': 0},
                           headers=admin_headers)
    assert response.status_code == 400


def test_dashboard_summary(client, admin_headers, teacher_headers, make_student):
    make_student()
    client.post('/api/announcements', json={'title': 'Welcome', 'content': 'New session'}, headers=admin_headers)

    assert client.get('/api/analytics/summary', headers=teacher_headers).status_code == 403
    summary = client.get('/api/analytics/summary', headers=admin_headers).get_json()['data']
    assert summary['total_students'] == 1
    assert summary['active_announcements'] == 1
    assert summary['pending_admissions'] == 0


# Routines
ROUTINE_V_A = {
    'class_name': 'V', 'section': 'A',
    'week_schedule': [{'day': 'Monday', 'periods': [
        {'start_time': '10:00 AM', 'end_time': '10:45 AM', 'subject': 'Mathematics', 'teacher': 'Rina Das',
         'room_no': '12'},
        {'start_time': '10:45 AM', 'end_time': '11:30 AM', 'subject': 'English', 'teacher': 'Amit Roy'},
    ]}],
}


def _monday(class_name, section, start, end, teacher, subject='Science'):
    return {'class_name': class_name, 'section': section, 'week_schedule': [{'day': 'Monday', 'periods': [
        {'start_time': start, 'end_time': end, 'subject': subject, 'teacher': teacher}]}]}


def test_routine_is_one_per_class_section(client, admin_headers):
    created = client.post('/api/routines', json=ROUTINE_V_A, headers=admin_headers)
    assert created.status_code == 201
    routine = created.get_json()['data']
    assert routine['week_schedule'][0]['periods'][1]['room_no'] == ''

    replaced = client.post('/api/routines', json={**ROUTINE_V_A, 'week_schedule': []}, headers=admin_headers)
    assert replaced.status_code == 200
    assert replaced.get_json()['data']['id'] == routine['id']

    listing = client.get('/api/routines?class_name=V&section=A').get_json()
    assert listing['count'] == 1
    assert listing['data'][0]['week_schedule'] == []

    updated = client.put(f"/api/routines/{routine['id']}", json={'week_schedule': ROUTINE_V_A['week_schedule']},
                         headers=admin_headers)
    assert updated.status_code == 200
    assert len(updated.get_json()['data']['week_schedule'][0]['periods']) == 2

    assert client.delete(f"/api/routines/{routine['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/routines/{routine['id']}").status_code == 404


def test_routine_rejects_double_booked_teacher(client, admin_headers):
    client.post('/api/routines', json=ROUTINE_V_A, headers=admin_headers)

    response = client.post('/api/routines', json=_monday('VI', 'A', '10:30', '11:15', 'rina das'),
                           headers=admin_headers)
    assert response.status_code == 409
    assert 'Class V-A on Monday (10:00 AM - 10:45 AM)' in response.get_json()['error']
    assert client.get('/api/routines?class_name=VI').get_json()['count'] == 0

    # Back-to-back periods do not overlap
    response = client.post('/api/routines', json=_monday('VI', 'A', '10:45', '11:30', 'Rina Das'),
                           headers=admin_headers)
    assert response.status_code == 201


def test_routine_schedule_is_validated(client, admin_headers, teacher_headers):
    sunday = {'class_name': 'V', 'section': 'A', 'week_schedule': [{'day': 'Sunday', 'periods': []}]}
    response = client.post('/api/routines', json=sunday, headers=admin_headers)
    assert response.status_code == 400
    assert 'week_schedule' in response.get_json()['errors']

    backwards = _monday('V', 'A', '11:00', '10:00', 'Rina Das')
    assert client.post('/api/routines', json=backwards, headers=admin_headers).status_code == 400
    assert client.post('/api/routines', json=_monday('V', 'A', '25:00', '26:00', 'Rina Das'),
                       headers=admin_headers).status_code == 400
    assert client.post('/api/routines', json=ROUTINE_V_A, headers=teacher_headers).status_code == 403


def test_teacher_routine_collects_periods_across_classes(client, admin_headers):
    client.post('/api/routines', json=ROUTINE_V_A, headers=admin_headers)
    client.post('/api/routines', json=_monday('VI', 'B', '09:00', '09:45', 'Rina Das', 'Mathematics'),
                headers=admin_headers)

    body = client.get('/api/routines/teacher/RINA DAS').get_json()
    assert body['count'] == 2
    assert [(period['day'], period['class_name'], period['start_time']) for period in body['periods']] == [
        ('Monday', 'VI', '09:00'), ('Monday', 'V', '10:00 AM')]
    assert client.get('/api/routines/teacher/Rina').get_json()['count'] == 0


# Site settings
def test_site_settings_defaults_and_partial_headmaster_update(client, admin_headers, teacher_headers):
    settings = client.get('/api/site-settings').get_json()['data']
    assert settings['hero_images'] == []
    assert settings['headmaster']['designation'] == 'Headmaster'
    assert settings['school_info']['name'] == 'Baliadanga High School'

    assert client.put('/api/site-settings/headmaster', json={'name': 'S. Roy'},
                      headers=teacher_headers).status_code == 403
    client.put('/api/site-settings/headmaster', json={'name': 'S. Roy', 'message': 'Welcome'}, headers=admin_headers)
    response = client.put('/api/site-settings/headmaster', json={'designation': 'Head Teacher'}, headers=admin_headers)
    assert response.status_code == 200
    assert response.get_json()['data']['headmaster'] == {
        'name': 'S. Roy', 'designation': 'Head Teacher', 'message': 'Welcome', 'photo_url': '', 'photo_file_id': ''}
    assert client.get('/api/site-settings').get_json()['data']['headmaster']['name'] == 'S. Roy'


def test_hero_images_are_replaced_as_a_list(app, client, admin_headers):
    assert client.put('/api/site-settings/hero-images', json={'hero_images': 'campus.jpg'},
                      headers=admin_headers).status_code == 400
    assert client.put('/api/site-settings/hero-images', json={'hero_images': [{'caption': 'No url'}]},
                      headers=admin_headers).status_code == 400

    campus = _upload(client, admin_headers, 'campus.jpg', b'campus', folder='site')
    hall = _upload(client, admin_headers, 'hall.jpg', b'hall', folder='site')
    images = [{'url': ref['url'], 'file_id': ref['file_id'], 'caption': caption}
              for ref, caption in ((campus, 'Campus'), (hall, 'Assembly hall'))]
    response = client.put('/api/site-settings/hero-images', json={'hero_images': images}, headers=admin_headers)
    assert [image['caption'] for image in response.get_json()['data']['hero_images']] == ['Campus', 'Assembly hall']

    client.put('/api/site-settings/hero-images', json={'hero_images': images[1:]}, headers=admin_headers)
    assert not os.path.exists(os.path.join(app.config['UPLOAD_FOLDER'], campus['file_id']))
    assert os.path.isfile(os.path.join(app.config['UPLOAD_FOLDER'], hall['file_id']))
