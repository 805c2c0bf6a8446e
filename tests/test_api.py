import io
import os
import tempfile
import zipfile

import pytest

from app import create_app
from conftest import api, login, make_config, png_bytes
from storage import Status


@pytest.fixture
def catalog(app):
    """Категория, администратор и обычный пользователь."""
    repo = app.extensions["catalog"]
    with app.app_context():
        repo.create_category({"name": "Tools"})
        admin_id = repo.create_user(
            {"username": "admin", "email": "admin@example.com", "password": "admin123", "is_admin": True}
        )
        alice_id = repo.create_user({"username": "alice", "email": "alice@x.com", "password": "secret1"})
    return {"admin": admin_id, "alice": alice_id}


def upload(client, title="Bracket", category="tools", files=None, **extra):
    data = {
        "action": "upload_model",
        "title": title,
        "category": category,
        "model_file": files if files is not None else (io.BytesIO(b"solid bracket"), "bracket.stl"),
    }
    data.update(extra)
    return client.post("/api", data=data, content_type="multipart/form-data")


def uploaded_model_id(client, **kwargs):
    response = upload(client, **kwargs)
    assert response.status_code == 200, response.get_json()
    return response.get_json()["model_id"]


def test_healthz_reports_backend(client, backend):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "storage": backend}
    assert response.headers["X-Frame-Options"] == "DENY"


def test_unknown_action(client):
    response = api(client, "format_disk")
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_php_alias_dispatches(client, catalog):
    response = client.get("/api.php", query_string={"action": "get_categories"})
    assert response.status_code == 200
    assert [category["id"] for category in response.get_json()["categories"]] == ["tools"]


def test_mutating_action_over_get_is_rejected(client, catalog):
    response = api(client, "delete_category", method="get", id="tools")
    assert response.status_code == 405


def test_register_logs_user_in(client):
    response = api(client, "register", username="new_user", email="new@x.com", password="secret1")
    assert response.status_code == 200
    assert response.get_json()["success"] is True

    auth = api(client, "check_auth", method="get").get_json()
    assert auth["authenticated"] is True
    assert auth["user"]["username"] == "new_user"


@pytest.mark.parametrize(
    "fields",
    [
        {"username": "ab", "email": "a@x.com", "password": "secret1"},
        {"username": "bad name", "email": "a@x.com", "password": "secret1"},
        {"username": "x" * 21, "email": "a@x.com", "password": "secret1"},
        {"username": "good_name", "email": "not-an-email", "password": "secret1"},
        {"username": "good_name", "email": "a@x.com", "password": "12345"},
        {"username": "", "email": "a@x.com", "password": "secret1"},
        {"username": "ALICE", "email": "fresh@x.com", "password": "secret1"},
        {"username": "fresh", "email": "Alice@x.com", "password": "secret1"},
    ],
)
def test_register_validation(client, catalog, fields):
    response = api(client, "register", **fields)
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_login_and_logout(client, catalog):
    assert login(client, "alice", "wrong").status_code == 401

    response = login(client, "ALICE@x.com", "secret1")
    assert response.status_code == 200
    assert response.get_json()["user"] == {"id": catalog["alice"], "username": "alice", "is_admin": False}

    assert api(client, "logout").status_code == 200
    assert api(client, "check_auth", method="get").get_json()["authenticated"] is False


def test_change_password(client, catalog):
    login(client, "alice", "secret1")
    bad = api(client, "change_password", current_password="nope", new_password="another1")
    assert bad.status_code == 400

    assert api(client, "change_password", current_password="secret1", new_password="another1").status_code == 200
    api(client, "logout")
    assert login(client, "alice", "another1").status_code == 200


def test_upload_requires_login(client, catalog, upload_dir):
    response = upload(client)
    assert response.status_code == 401
    assert os.listdir(upload_dir) == []


def test_upload_rejects_wrong_extension_before_writing(client, catalog, upload_dir):
    login(client, "alice", "secret1")
    response = upload(client, files=(io.BytesIO(b"MZ"), "virus.exe"))

    assert response.status_code == 400
    assert os.listdir(upload_dir) == []


def test_upload_rejects_oversized_file_before_writing(tmp_path, backend):
    app = create_app(make_config(tmp_path, backend, MAX_FILE_SIZE=1024))
    with app.app_context():
        repo = app.extensions["catalog"]
        repo.create_category({"name": "Tools"})
        repo.create_user({"username": "alice", "email": "alice@x.com", "password": "secret1"})
    client = app.test_client()
    login(client, "alice", "secret1")

    response = upload(client, files=(io.BytesIO(b"x" * 4096), "huge.stl"))

    assert response.status_code == 400
    assert os.listdir(app.config["UPLOAD_FOLDER"]) == []
    with app.app_context():
        assert app.extensions["catalog"].list_models() == []


def test_upload_unknown_category(client, catalog, upload_dir):
    login(client, "alice", "secret1")
    response = upload(client, category="missing")
    assert response.status_code == 400
    assert os.listdir(upload_dir) == []


def test_upload_and_browse(client, catalog, upload_dir):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(
        client,
        description="A sturdy bracket",
        tags='["mount", "wall"]',
        print_settings='{"infill": "20%"}',
        photos=(io.BytesIO(png_bytes()), "shot.png"),
    )

    listing = api(client, "get_models", method="get", query="WALL").get_json()
    assert listing["pagination"] == {"page": 1, "limit": 20, "total": 1, "total_pages": 1}
    model = listing["models"][0]
    assert model["id"] == model_id
    assert model["author"] == "alice"
    assert model["category_name"] == "Tools"
    assert model["category_icon"] == "fa-cube"
    assert model["tags"] == ["mount", "wall"]
    assert model["print_settings"] == {"infill": "20%"}
    assert model["files"][0]["original_name"] == "bracket"
    assert model["photo"].startswith("photo_")
    assert "time_ago" in model

    stored = set(os.listdir(upload_dir))
    assert model["filename"] in stored
    assert model["photo"] in stored
    assert model["filename"].endswith("_bracket.stl")


def test_get_models_pagination_limits(client, catalog):
    login(client, "alice", "secret1")
    for index in range(3):
        uploaded_model_id(client, title=f"Model {index}")

    page = api(client, "get_models", method="get", limit=2, page=2).get_json()
    assert len(page["models"]) == 1
    assert page["pagination"]["total_pages"] == 2

    clamped = api(client, "get_models", method="get", limit=500, page=-3).get_json()
    assert clamped["pagination"]["limit"] == 50
    assert clamped["pagination"]["page"] == 1


def test_get_model_counts_views_and_favorites(client, catalog):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client)

    first = api(client, "get_model", method="get", id=model_id).get_json()["model"]
    assert first["views"] == 1
    assert first["is_favorited"] is False

    favorite = api(client, "favorite_model", id=model_id).get_json()
    assert favorite["is_favorited"] is True

    second = api(client, "get_model", method="get", id=model_id).get_json()["model"]
    assert second["views"] == 2
    assert second["is_favorited"] is True

    assert api(client, "get_model", method="get", id="missing").status_code == 404


def test_like_once_per_session(client, catalog):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client)

    first = api(client, "like_model", id=model_id).get_json()
    assert first == {"success": True, "likes": 1, "already_liked": False}

    second = api(client, "like_model", id=model_id).get_json()
    assert second["already_liked"] is True
    assert second["likes"] == 1
    assert api(client, "check_liked", method="get", id=model_id).get_json()["is_liked"] is True


def test_download_counts_model_and_author(client, app, catalog):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client, title="Bracket")
    api(client, "logout")

    assert api(client, "download_model", id=model_id).status_code == 401

    login(client, "admin", "admin123")
    response = api(client, "download_model", id=model_id).get_json()
    assert response["download_url"].startswith("uploads/")
    assert response["filename"] == "Bracket.stl"

    with app.app_context():
        repo = app.extensions["catalog"]
        assert repo.get_model(model_id)["downloads"] == 1
        assert repo.get_user(catalog["alice"])["download_count"] == 1


def test_zip_download_contains_all_files(client, app, catalog):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client, title="Two Parts")
    model = api(client, "get_model", method="get", id=model_id).get_json()["model"]
    add = client.post(
        "/api",
        data={"action": "add_model_file", "model_id": model_id, "file": (io.BytesIO(b"o cube"), "cube.obj")},
        content_type="multipart/form-data",
    )
    assert add.status_code == 200
    assert add.get_json()["file"]["has_color"] is True

    response = client.get(f"/models/{model_id}/download.zip")
    assert response.status_code == 200
    assert response.mimetype == "application/zip"
    with zipfile.ZipFile(io.BytesIO(response.data)) as archive:
        assert sorted(archive.namelist()) == ["bracket.stl", "cube.obj"]

    uploaded = client.get(f"/uploads/{model['filename']}")
    assert uploaded.data == b"solid bracket"


def test_model_changes_require_owner_or_admin(client, app, catalog):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client)
    api(client, "logout")

    api(client, "register", username="mallory", email="m@x.com", password="secret1")
    assert api(client, "update_model", id=model_id, title="Pwned").status_code == 403
    assert api(client, "delete_model", id=model_id).status_code == 403
    api(client, "logout")

    login(client, "admin", "admin123")
    assert api(client, "update_model", id=model_id, title="Moderated", featured="true").status_code == 200
    with app.app_context():
        model = app.extensions["catalog"].get_model(model_id)
        assert model["title"] == "Moderated"
        assert model["featured"] is True


def test_owner_updates_and_deletes_model(client, app, catalog, upload_dir):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client)

    assert api(client, "update_model", id=model_id, title="  ").status_code == 400
    assert api(client, "update_model", id=model_id, category="missing").status_code == 400
    assert api(client, "update_model", id=model_id, tags="a, b").status_code == 200
    with app.app_context():
        assert app.extensions["catalog"].get_model(model_id)["tags"] == ["a", "b"]

    assert api(client, "delete_model", id=model_id).status_code == 200
    assert os.listdir(upload_dir) == []
    assert api(client, "delete_model", id=model_id).status_code == 404
    categories = api(client, "get_categories", method="get").get_json()["categories"]
    assert categories[0]["count"] == 0


def test_remove_last_model_file_is_refused(client, catalog):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client)
    model = api(client, "get_model", method="get", id=model_id).get_json()["model"]

    response = api(client, "remove_model_file", model_id=model_id, filename=model["filename"])
    assert response.status_code == 400


def test_model_photo_endpoints(client, catalog, upload_dir):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client)

    fake = client.post(
        "/api",
        data={"action": "add_model_photo", "model_id": model_id, "photo": (io.BytesIO(b"not an image"), "x.png")},
        content_type="multipart/form-data",
    )
    assert fake.status_code == 400

    added = client.post(
        "/api",
        data={"action": "add_model_photo", "model_id": model_id, "photo": (io.BytesIO(png_bytes()), "x.png")},
        content_type="multipart/form-data",
    )
    assert added.status_code == 200
    photo = added.get_json()["photo"]
    assert photo in os.listdir(upload_dir)

    assert api(client, "remove_model_photo", model_id=model_id, filename=photo).status_code == 200
    assert photo not in os.listdir(upload_dir)


def test_category_management_requires_admin(client, catalog):
    login(client, "alice", "secret1")
    assert api(client, "create_category", name="Games").status_code == 403
    api(client, "logout")

    login(client, "admin", "admin123")
    created = api(client, "create_category", name="Games", icon="fa-gamepad").get_json()
    assert created["category_id"] == "games"
    assert api(client, "update_category", id="games", description="Fun").status_code == 200
    assert api(client, "update_category", id="missing", name="x").status_code == 404
    assert api(client, "delete_category", id="games").status_code == 200
    assert api(client, "create_category", name="").status_code == 400


def test_delete_category_with_models_is_refused(client, catalog):
    login(client, "alice", "secret1")
    uploaded_model_id(client)
    api(client, "logout")

    login(client, "admin", "admin123")
    response = api(client, "delete_category", id="tools")
    assert response.status_code == 400
    categories = api(client, "get_categories", method="get").get_json()["categories"]
    assert categories[0]["count"] == 1


def test_user_endpoints(client, catalog):
    assert api(client, "get_users", method="get").status_code == 403

    public = api(client, "get_user", method="get", id=catalog["alice"]).get_json()["user"]
    assert "email" not in public
    assert "password" not in public
    assert public["models"] == []

    login(client, "alice", "secret1")
    own = api(client, "get_user", method="get", id=catalog["alice"]).get_json()["user"]
    assert own["email"] == "alice@x.com"

    assert api(client, "update_user", bio="Hello", is_admin="true").status_code == 200
    updated = api(client, "get_user", method="get", id=catalog["alice"]).get_json()["user"]
    assert updated["bio"] == "Hello"
    assert updated["is_admin"] is False

    assert api(client, "update_user", id=catalog["admin"], bio="x").status_code == 403


def test_admin_deletes_user_but_not_self(client, app, catalog):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client)
    api(client, "logout")

    login(client, "admin", "admin123")
    users = api(client, "get_users", method="get").get_json()["users"]
    assert {user["username"] for user in users} == {"admin", "alice"}

    assert api(client, "delete_user", id=catalog["admin"]).status_code == 400
    assert api(client, "delete_user", id=catalog["alice"]).status_code == 200
    assert api(client, "delete_user", id=catalog["alice"]).status_code == 404
    assert api(client, "get_model", method="get", id=model_id).status_code == 404

    stats = api(client, "get_stats", method="get").get_json()["stats"]
    assert stats == {"total_models": 0, "total_users": 1, "total_downloads": 0, "total_categories": 1}


def test_upload_avatar_replaces_previous(client, catalog, upload_dir):
    login(client, "alice", "secret1")

    def send_avatar():
        return client.post(
            "/api",
            data={"action": "upload_avatar", "avatar": (io.BytesIO(png_bytes()), "me.png")},
            content_type="multipart/form-data",
        )

    first = send_avatar().get_json()["avatar"]
    assert first in os.listdir(upload_dir)

    second_response = send_avatar()
    assert second_response.status_code == 200
    second = second_response.get_json()["avatar"]
    if second != first:
        assert first not in os.listdir(upload_dir)
    assert second in os.listdir(upload_dir)


def test_csrf_token_required_when_enabled(tmp_path, backend):
    app = create_app(make_config(tmp_path, backend, CSRF_ENABLED=True))
    client = app.test_client()

    rejected = client.post("/api", data={"action": "logout"})
    assert rejected.status_code == 403

    token = client.get("/api", query_string={"action": "csrf_token"}).get_json()["csrf_token"]
    accepted = client.post("/api", data={"action": "logout"}, headers={"X-CSRF-Token": token})
    assert accepted.status_code == 200


def test_login_rate_limit(tmp_path, backend):
    app = create_app(make_config(tmp_path, backend, RATE_LIMIT_ENABLED=True))
    client = app.test_client()

    statuses = [login(client, "ghost", "nope").status_code for _ in range(11)]
    assert statuses[:10] == [401] * 10
    assert statuses[10] == 429


def test_unreachable_database_falls_back_to_json(tmp_path):
    broken = f"sqlite:///{tmp_path}/missing/dir/catalog.db"
    app = create_app(make_config(tmp_path, "sql", DATABASE_URL=broken))
    assert app.extensions["catalog"].name == "json"


def test_seeded_admin_can_log_in(tmp_path, backend):
    app = create_app(make_config(tmp_path, backend, SEED_DEFAULTS=True, ADMIN_PASSWORD="admin123"))
    client = app.test_client()

    assert login(client, "Admin", "admin123").status_code == 200
    categories = api(client, "get_categories", method="get").get_json()["categories"]
    assert len(categories) == 8


# Откат загруженных файлов при ошибке хранилища


def test_failed_model_record_removes_uploaded_files(client, app, catalog, upload_dir, monkeypatch):
    monkeypatch.setattr(app.extensions["catalog"], "create_model", lambda data: None)
    login(client, "alice", "secret1")

    response = upload(
        client,
        files=[(io.BytesIO(b"solid a"), "a.stl"), (io.BytesIO(b"solid b"), "b.stl")],
        photos=(io.BytesIO(png_bytes()), "shot.png"),
    )
    assert response.status_code == 500
    assert os.listdir(upload_dir) == []


def test_failed_file_attach_removes_new_file(client, app, catalog, upload_dir, monkeypatch):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client)
    before = sorted(os.listdir(upload_dir))
    monkeypatch.setattr(app.extensions["catalog"], "add_model_file", lambda model_id, data: Status.FAILED)

    response = client.post(
        "/api",
        data={"action": "add_model_file", "model_id": model_id, "file": (io.BytesIO(b"o cube"), "cube.obj")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 500
    assert sorted(os.listdir(upload_dir)) == before


def test_failed_avatar_update_removes_new_avatar(client, app, catalog, upload_dir, monkeypatch):
    login(client, "alice", "secret1")
    monkeypatch.setattr(app.extensions["catalog"], "update_user", lambda user_id, data: Status.FAILED)

    response = client.post(
        "/api",
        data={"action": "upload_avatar", "avatar": (io.BytesIO(png_bytes()), "me.png")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 500
    assert os.listdir(upload_dir) == []


# Архив модели


def test_zip_names_stay_unique_for_clashing_originals(client, catalog):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(
        client,
        files=[
            (io.BytesIO(b"solid one"), "part.stl"),
            (io.BytesIO(b"solid two"), "2_part.stl"),
            (io.BytesIO(b"solid three"), "part.stl"),
        ],
    )

    response = client.get(f"/models/{model_id}/download.zip")
    with zipfile.ZipFile(io.BytesIO(response.data)) as archive:
        names = archive.namelist()
        contents = sorted(archive.read(name) for name in names)
    assert sorted(names) == ["1_part.stl", "2_part.stl", "part.stl"]
    assert contents == [b"solid one", b"solid three", b"solid two"]


def test_zip_temp_file_removed_when_archiving_fails(client, app, catalog, tmp_path, monkeypatch):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client)
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))

    def broken_write(self, *args, **kwargs):
        raise OSError("read error")

    monkeypatch.setattr(zipfile.ZipFile, "write", broken_write)

    with pytest.raises(OSError):
        client.get(f"/models/{model_id}/download.zip")
    assert os.listdir(scratch) == []
    with app.app_context():
        assert app.extensions["catalog"].get_model(model_id)["downloads"] == 0


# Настройки сайта


def configure_site(app, **values):
    with app.app_context():
        assert app.extensions["catalog"].set_settings(values) is Status.OK


def test_settings_are_public_but_saved_by_admin_only(client, catalog):
    settings = api(client, "get_settings", method="get").get_json()["settings"]
    assert settings["site_name"] == "Community 3D Model Vault"

    login(client, "alice", "secret1")
    assert api(client, "save_settings", site_name="Mine").status_code == 403
    assert api(client, "get_settings_schema", method="get").status_code == 403
    api(client, "logout")

    login(client, "admin", "admin123")
    schema = api(client, "get_settings_schema", method="get").get_json()["schema"]
    assert set(schema) == {"site", "users", "uploads", "features", "display", "viewer"}

    saved = api(client, "save_settings", site_name="Arcade Vault", enable_likes="0")
    assert saved.status_code == 200
    assert saved.get_json()["settings"]["enable_likes"] is False
    assert api(client, "save_settings", items_per_page="7").status_code == 400
    assert api(client, "save_settings").status_code == 400
    assert api(client, "get_settings", method="get").get_json()["settings"]["site_name"] == "Arcade Vault"


def test_disabled_features_are_refused(client, app, catalog):
    login(client, "alice", "secret1")
    model_id = uploaded_model_id(client)
    configure_site(app, enable_likes=False, enable_favorites=False, enable_downloads=False)

    assert api(client, "like_model", id=model_id).status_code == 403
    assert api(client, "favorite_model", id=model_id).status_code == 403
    assert api(client, "download_model", id=model_id).status_code == 403
    assert client.get(f"/models/{model_id}/download.zip").status_code == 403

    configure_site(app, enable_likes=True)
    assert api(client, "like_model", id=model_id).status_code == 200


def test_maintenance_mode_lets_only_admins_through(client, app, catalog):
    configure_site(app, maintenance_mode=True, maintenance_message="Back at noon")

    blocked = api(client, "get_models", method="get")
    assert blocked.status_code == 503
    assert blocked.get_json()["error"] == "Back at noon"
    assert api(client, "get_settings", method="get").status_code == 200

    assert login(client, "alice", "secret1").status_code == 200
    assert api(client, "get_categories", method="get").status_code == 503
    api(client, "logout")

    login(client, "admin", "admin123")
    assert api(client, "get_models", method="get").status_code == 200
    assert api(client, "save_settings", maintenance_mode="off").status_code == 200
    api(client, "logout")
    assert api(client, "get_models", method="get").status_code == 200


# Регистрация: приглашения и одобрение


def create_invite_code(client, **fields):
    login(client, "admin", "admin123")
    response = api(client, "create_invite", **fields)
    api(client, "logout")
    assert response.status_code == 200
    return response.get_json()["code"]


def register(client, username, invite_code=None):
    fields = {"username": username, "email": f"{username}@x.com", "password": "secret1"}
    if invite_code is not None:
        fields["invite_code"] = invite_code
    return api(client, "register", **fields)


def test_closed_registration_needs_valid_invite(client, app, catalog):
    configure_site(app, allow_registration=False)

    assert register(client, "bob").status_code == 403
    assert register(client, "bob", invite_code="WRONG123").status_code == 403

    code = create_invite_code(client, max_uses=1, note="bob")
    response = register(client, "bob", invite_code=code.lower())
    assert response.status_code == 200
    assert api(client, "check_auth", method="get").get_json()["user"]["username"] == "bob"
    api(client, "logout")

    exhausted = register(client, "carol", invite_code=code)
    assert exhausted.status_code == 403
    assert exhausted.get_json()["success"] is False


def test_bad_invite_on_open_registration_is_rejected(client, catalog):
    response = register(client, "bob", invite_code="WRONG123")
    assert response.status_code == 400
    assert api(client, "check_auth", method="get").get_json()["authenticated"] is False


def test_pending_user_waits_for_admin_approval(client, app, catalog):
    configure_site(app, require_admin_approval=True)

    response = register(client, "bob")
    assert response.status_code == 200
    assert response.get_json()["pending_approval"] is True
    assert api(client, "check_auth", method="get").get_json()["authenticated"] is False

    refused = login(client, "bob", "secret1")
    assert refused.status_code == 403
    assert refused.get_json()["pending_approval"] is True

    login(client, "admin", "admin123")
    pending = api(client, "get_pending_users", method="get").get_json()["users"]
    assert [user["username"] for user in pending] == ["bob"]
    assert api(client, "approve_user", id=pending[0]["id"]).status_code == 200
    assert api(client, "get_pending_users", method="get").get_json()["users"] == []
    api(client, "logout")

    assert login(client, "bob", "secret1").status_code == 200


def test_invite_skips_admin_approval(client, app, catalog):
    configure_site(app, require_admin_approval=True)
    code = create_invite_code(client, max_uses=0)

    response = register(client, "bob", invite_code=code)
    assert "pending_approval" not in response.get_json()
    assert api(client, "check_auth", method="get").get_json()["authenticated"] is True


def test_rejected_registration_is_deleted(client, app, catalog):
    configure_site(app, require_admin_approval=True)
    user_id = register(client, "bob").get_json()["user_id"]

    login(client, "alice", "secret1")
    assert api(client, "reject_user", id=user_id).status_code == 403
    api(client, "logout")

    login(client, "admin", "admin123")
    assert api(client, "reject_user", id=catalog["admin"]).status_code == 400
    assert api(client, "reject_user", id=user_id).status_code == 200
    assert api(client, "reject_user", id=user_id).status_code == 404
    api(client, "logout")
    assert login(client, "bob", "secret1").status_code == 401


def test_invite_management(client, catalog):
    login(client, "admin", "admin123")
    created = api(client, "create_invite", max_uses=3, expires_days=7, note="team").get_json()
    invite = created["invite"]
    assert invite["code"] == created["code"]
    assert invite["max_uses"] == 3
    assert invite["expires_at"] is not None

    assert api(client, "create_invite", max_uses="many").status_code == 400
    assert api(client, "create_invite", expires_days=-1).status_code == 400

    listed = api(client, "get_invites", method="get").get_json()["invites"]
    assert [item["id"] for item in listed] == [invite["id"]]

    toggled = api(client, "toggle_invite", id=invite["id"])
    assert toggled.get_json()["active"] is False
    assert api(client, "delete_invite", id=invite["id"]).status_code == 200
    assert api(client, "delete_invite", id=invite["id"]).status_code == 404
    assert api(client, "toggle_invite", id=invite["id"]).status_code == 404
