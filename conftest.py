import httpx
import pytest

from api_client import SchoolApiClient
from app import create_app
from app_models import db, User
from uploads import init_file_store

ADMIN = {'email': 'admin@baliadanga.test', 'password': 'adminpass'}
TEACHER = {'email': 'teacher@baliadanga.test', 'password': 'teacherpass'}
OTHER_TEACHER = {'email': 'teacher2@baliadanga.test', 'password': 'teacherpass'}


def _add_user(name, credentials, role):
    user = User(name=name, email=credentials['email'], role=role)
    user.set_password(credentials['password'])
    db.session.add(user)


@pytest.fixture
def app(tmp_path):
    app = create_app('testing')
    app.config['UPLOAD_FOLDER'] = str(tmp_path / 'uploads')
    init_file_store(app)

    with app.app_context():
        db.create_all()
        _add_user('Head Admin', ADMIN, 'admin')
        _add_user('Rina Das', TEACHER, 'teacher')
        _add_user('Amit Roy', OTHER_TEACHER, 'teacher')
        db.session.commit()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _bearer(app, credentials):
    # Separate client so the login cookie does not leak into the test's client
    response = app.test_client().post('/api/auth/login', json=credentials)
    assert response.status_code == 200, response.get_json()
    return {'Authorization': f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def admin_headers(app):
    return _bearer(app, ADMIN)


@pytest.fixture
def teacher_headers(app):
    return _bearer(app, TEACHER)


@pytest.fixture
def other_teacher_headers(app):
    return _bearer(app, OTHER_TEACHER)


@pytest.fixture
def api(app):
    """Real HTTP client wired to the in-process app, signed in as admin"""
    api = SchoolApiClient('http://testserver/api', transport=httpx.WSGITransport(app=app))
    api.login(ADMIN['password'], email=ADMIN['email'])
    yield api
    api.close()


@pytest.fixture
def make_student(client, admin_headers):
    counter = {'n': 0}

    def make(**overrides):
        counter['n'] += 1
        payload = {
            'student_id': f"ST-2024-{counter['n']:03d}",
            'name': f"Student {counter['n']}",
            'roll_number': str(counter['n']),
            'current_class': 'V',
            'section': 'A',
            'session': '2024-2025',
            'guardian_name': 'Guardian',
            'guardian_phone': '9000000000',
        }
        payload.update(overrides)
        response = client.post('/api/students', json=payload, headers=admin_headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()['data']

    return make


@pytest.fixture
def make_exam(client, admin_headers):
    def make(**overrides):
        payload = {
            'name': 'Annual Exam 2024',
            'session': '2024-2025',
            'class_name': 'V',
            'subjects': [
                {'name': 'Bengali', 'full_marks': 100, 'pass_marks': 30},
                {'name': 'Mathematics', 'full_marks': 100, 'pass_marks': 30},
            ],
        }
        payload.update(overrides)
        response = client.post('/api/exams', json=payload, headers=admin_headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()['data']

    return make
