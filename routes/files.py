"""
Модуль: `routes/files.py`.
Назначение: Выдача загруженных файлов и скачивание всех файлов модели одним ZIP-архивом.
"""

import os
import re
import tempfile
import zipfile

from flask import abort, current_app, send_file, send_from_directory
from flask_login import login_required

from routes.api import record_download
from routes.helpers import feature_enabled
from storage import get_repository

_ARCHIVE_TITLE_RE = re.compile(r"[^a-zA-Z0-9_-]")


def _archive_name(entry: dict) -> str:
    extension = entry.get("extension") or ""
    name = entry.get("original_name") or entry["filename"]
    if extension and not name.lower().endswith(f".{extension}"):
        name = f"{name}.{extension}"
    return os.path.basename(name)


def _unique_name(name: str, used: set[str]) -> str:
    """Одинаковые исходные имена получают префикс-номер: 1_part.stl, 2_part.stl."""
    candidate = name
    counter = 1
    while candidate in used:
        candidate = f"{counter}_{name}"
        counter += 1
    return candidate


def register_routes(app):
    @app.route("/uploads/<path:filename>")
    def uploaded_file(filename):
        return send_from_directory(os.path.abspath(app.config["UPLOAD_FOLDER"]), filename)

    @app.route("/models/<model_id>/download.zip")
    @login_required
    def download_model_zip(model_id):
        model = get_repository().get_model(model_id)
        if model is None:
            abort(404)
        if not feature_enabled("downloads"):
            abort(403)

        upload_folder = app.config["UPLOAD_FOLDER"]
        present = [entry for entry in model["files"] if os.path.isfile(os.path.join(upload_folder, entry["filename"]))]
        if not present:
            abort(404)

        with tempfile.NamedTemporaryFile(delete=False, suffix=".zip") as handle:
            temp_path = handle.name
        try:
            with zipfile.ZipFile(temp_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                used_names: set[str] = set()
                for entry in present:
                    name = _unique_name(_archive_name(entry), used_names)
                    used_names.add(name)
                    archive.write(os.path.join(upload_folder, entry["filename"]), arcname=name)
        except Exception:
            os.unlink(temp_path)
            raise

        record_download(model)

        safe_title = _ARCHIVE_TITLE_RE.sub("_", model["title"]) or "model"
        response = send_file(
            temp_path,
            mimetype="application/zip",
            as_attachment=True,
            download_name=f"{safe_title}.zip",
        )
        response.headers["Cache-Control"] = "no-cache, must-revalidate"

        @response.call_on_close
        def cleanup():
            if os.path.exists(temp_path):
                os.unlink(temp_path)

        current_app.logger.info("Скачан архив модели %s (%s файлов)", model_id, len(present))
        return response
