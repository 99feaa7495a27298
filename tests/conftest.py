import os
import pytest


@pytest.fixture(scope="session", autouse=True)
def _set_env(tmp_path_factory):
    base = tmp_path_factory.mktemp("clerva")
    os.environ["SUPABASE_JWT_SECRET"] = "clerva-test-secret-0123456789abcdef"
    os.environ["SECRET_KEY"] = "test"
    os.environ["DATABASE_URL"] = f"sqlite:///{base / 'clerva_test.db'}"
    os.environ["CONFIG_DIR"] = str(base / "config")
    os.environ["ANALYTICS_CACHE_TTL"] = "0"
    os.environ["RATELIMIT_ENABLED"] = "0"
    os.environ.pop("REDIS_URL", None)
    os.environ.pop("LOG_DIR", None)
    yield


@pytest.fixture(scope="session")
def app(_set_env):
    from clerva.app import create_app
    from clerva.utils.cache import reset_redis
    reset_redis()
    a = create_app({"TESTING": True})
    return a


@pytest.fixture(autouse=True)
def _clean_db(app):
    from clerva.utils.db import Base, get_engine
    from clerva.utils.cache import clear
    from clerva.utils.ratelimit import reset_buckets
    eng = get_engine()
    Base.metadata.drop_all(eng)
    Base.metadata.create_all(eng)
    clear()
    reset_buckets()
    yield


@pytest.fixture()
def client(app):
    return app.test_client()


def auth_header(t):
    return {"Authorization": f"Bearer {t}"}


@pytest.fixture()
def make_user(app):
    """建立使用者（可選 profile），回傳 id"""
    from clerva.utils.db import get_session
    from clerva.models import Profile, User

    counter = {"n": 0}

    def _make(name=None, profile=None, **fields):
        counter["n"] += 1
        n = counter["n"]
        with get_session() as s:
            u = User(email=fields.pop("email", f"user{n}@example.com"), name=name or f"User {n}", **fields)
            s.add(u)
            s.flush()
            if profile is not None:
                s.add(Profile(user_id=u.id, **profile))
            s.commit()
            return u.id
    return _make


@pytest.fixture()
def token_for(app):
    from flask_jwt_extended import create_access_token

    def _token(user_id):
        with app.app_context():
            return create_access_token(identity=user_id)
    return _token


@pytest.fixture()
def user(make_user):
    return make_user(name="Alice")


@pytest.fixture()
def admin(make_user):
    return make_user(name="Admin", is_admin=True)


@pytest.fixture()
def super_admin(make_user):
    return make_user(name="Root", is_admin=True, is_super_admin=True)


@pytest.fixture()
def user_headers(user, token_for):
    return auth_header(token_for(user))


@pytest.fixture()
def admin_headers(admin, token_for):
    return auth_header(token_for(admin))


@pytest.fixture()
def super_headers(super_admin, token_for):
    return auth_header(token_for(super_admin))
