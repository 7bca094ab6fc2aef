# tests/conftest.py

import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from config import TestingConfig
from models import db
from seed import seed_database, DEMO_PASSWORD

ADMIN_ID = 'u1'
STAFF_ID = 'u2'
OTHER_STAFF_ID = 'u3'
VIEWER_ID = 'u4'

ROLES_BY_ID = {
    ADMIN_ID: 'admin',
    STAFF_ID: 'staff',
    OTHER_STAFF_ID: 'staff',
    VIEWER_ID: 'viewer',
}


@pytest.fixture()
def app(tmp_path):
    """
    每個測試一個全新的 app 和 in-memory SQLite,寫入示範資料

    u1 admin, u2/u3 staff, u4 viewer; t1..t9 見 seed.DEMO_TASKS
    """
    class Config(TestingConfig):
        UPLOAD_FOLDER = str(tmp_path / 'uploads')
        LOG_DIR = str(tmp_path / 'logs')

    app = create_app(Config)
    with app.app_context():
        seed_database()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def password():
    return DEMO_PASSWORD


@pytest.fixture()
def auth_headers(app):
    """auth_headers('u2') -> 帶 Bearer token 的 headers"""
    def make(user_id, role=None):
        with app.app_context():
            token = create_access_token(
                identity=user_id,
                additional_claims={'role': role or ROLES_BY_ID[user_id]}
            )
        return {'Authorization': f'Bearer {token}'}
    return make


@pytest.fixture()
def admin(auth_headers):
    return auth_headers(ADMIN_ID)


@pytest.fixture()
def staff(auth_headers):
    return auth_headers(STAFF_ID)


@pytest.fixture()
def other_staff(auth_headers):
    return auth_headers(OTHER_STAFF_ID)


@pytest.fixture()
def viewer(auth_headers):
    return auth_headers(VIEWER_ID)
