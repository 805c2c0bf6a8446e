import io

import pytest
from PIL import Image

from app import create_app


def make_config(tmp_path, backend: str, **overrides) -> dict:
    config = {
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "DATABASE_URL": "sqlite://" if backend == "sql" else "",
        "DATA_DIR": str(tmp_path / "data"),
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "SEED_DEFAULTS": False,
        "CSRF_ENABLED": False,
        "RATE_LIMIT_ENABLED": False,
    }
    config.update(overrides)
    return config


@pytest.fixture(params=["json", "sql"])
def backend(request):
    return request.param


@pytest.fixture
def app(tmp_path, backend):
    return create_app(make_config(tmp_path, backend))


@pytest.fixture
def repo(app):
    with app.app_context():
        yield app.extensions["catalog"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def upload_dir(app):
    return app.config["UPLOAD_FOLDER"]


def png_bytes(size=(4, 4), color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def api(client, action: str, method: str = "post", **data):
    data["action"] = action
    if method == "get":
        return client.get("/api", query_string=data)
    return client.post("/api", data=data, content_type="multipart/form-data")


def login(client, username: str, password: str):
    return api(client, "login", username=username, password=password)
