import mongomock
import pytest

from backend.app import DEFAULT_DATABASE_NAME, create_app

JWT_SECRET = "test-secret-key-with-enough-length-for-hs256"
ADMIN_CODE = "packaging-admin"


@pytest.fixture
def mongo_client():
    return mongomock.MongoClient()


@pytest.fixture
def db(mongo_client):
    return mongo_client[DEFAULT_DATABASE_NAME]


@pytest.fixture
def make_app(mongo_client, tmp_path):
    def factory(**overrides):
        config = {
            "TESTING": True,
            "JWT_SECRET_KEY": JWT_SECRET,
            "ADMIN_CODE": ADMIN_CODE,
            "STRIPE_SECRET_KEY": "sk_test_dummy",
            "FRONTEND_BUILD_DIR": str(tmp_path / "build"),
            "PRINTFUL_API_KEY": "",
            "PLACEIT_API_KEY": "",
            "TEESPACE_API_KEY": "",
            "RESEND_API_KEY": "",
            "CONTACT_RECIPIENT": "",
        }
        config.update(overrides)
        return create_app(config, mongo_client=mongo_client)

    return factory


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


def register(client, email, password="secret-pass", admin_code=None):
    payload = {"email": email, "password": password}
    if admin_code is not None:
        payload["adminCode"] = admin_code
    return client.post("/api/register", json=payload)


def login(client, email, password="secret-pass"):
    return client.post("/api/login", json={"email": email, "password": password})


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_token(client):
    register(client, "customer@example.com")
    return login(client, "customer@example.com").get_json()["token"]


@pytest.fixture
def admin_token(client):
    register(client, "admin@example.com", admin_code=ADMIN_CODE)
    return login(client, "admin@example.com").get_json()["token"]
