# replay_pipeline/routes/analysis_routes.py
import os
import uuid
import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.utils import secure_filename

from replay_pipeline.context import ServiceContext
from replay_pipeline.errors import PersistenceError
from replay_pipeline.models.job import COMPLETED
from replay_pipeline.services.storage import ResultStorage, delete_file

bp = Blueprint("analysis", __name__)  # el prefijo se aplica al registrar en replay_pipeline/__init__.py

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".replay",)


def _ctx() -> ServiceContext:
    return ServiceContext.of(current_app)


def _iso(dt):
    return dt.replace(microsecond=0).isoformat() + "Z" if dt else None


@bp.post("/analyze")
def analyze():
    """
    Subir un replay y encolar su análisis
    ---
    tags:
      - Analysis
    consumes:
      - multipart/form-data
    parameters:
      - in: formData
        name: file
        type: file
        required: true
        description: Replay file (.replay)
      - in: formData
        name: playerId
        type: string
        required: false
    responses:
      202:
        description: Aceptado (job encolado)
      400:
        description: Falta el archivo o extensión no permitida
      503:
        description: Base de datos o broker no disponibles
    """
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return jsonify({"ok": False, "error": "file required"}), 400

    filename = secure_filename(upload.filename)
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        return jsonify({"ok": False, "error": f"Invalid file type. Allowed: {', '.join(ALLOWED_EXTENSIONS)}"}), 400

    upload_dir = current_app.config["UPLOAD_DIR"]
    os.makedirs(upload_dir, exist_ok=True)
    file_path = os.path.join(upload_dir, f"{uuid.uuid4().hex}_{filename}")
    upload.save(file_path)

    player_id = request.form.get("playerId") or "anon"
    try:
        job_id, task_id = _ctx().queue.submit(
            file_path,
            player_id=player_id,
            params={"original_filename": upload.filename},
        )
    except PersistenceError as e:
        logger.error(f"Upload could not be queued: {e}")
        try:
            delete_file(file_path)
        except OSError as rm_err:
            logger.warning(f"Could not remove upload {file_path}: {rm_err}")
        return jsonify({"ok": False, "error": "Job could not be queued, try again later"}), 503

    return jsonify({"ok": True, "job_id": job_id, "task_id": task_id, "status": "queued"}), 202


@bp.get("/analyze/<int:job_id>")
def job_status(job_id: int):
    """
    Estado de un job de análisis
    ---
    tags:
      - Analysis
    parameters:
      - in: path
        name: job_id
        required: true
        type: integer
    responses:
      200: {description: OK}
      404: {description: No encontrado}
      503: {description: Base de datos no disponible}
    """
    try:
        job = _ctx().store.get(job_id)
    except PersistenceError as e:
        logger.error(f"Status lookup failed: {e}")
        return jsonify({"ok": False, "error": "Job store unavailable"}), 503
    if not job:
        return jsonify({"ok": False, "error": "job not found"}), 404

    result = None
    if job.status == COMPLETED and job.result_path:
        result = ResultStorage.load(job.result_path)

    return jsonify({
        "ok": True,
        "job_id": job.id,
        "task_id": job.task_id,
        "status": job.status,
        "result_path": job.result_path,
        "error": job.error_message,
        "error_kind": job.error_kind,
        "attempts": job.attempts,
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
        "result": result,
    }), 200


@bp.get("/jobs")
def list_jobs():
    """
    Últimos 100 jobs (admin/debug)
    ---
    tags:
      - Analysis
    responses:
      200: {description: OK}
    """
    try:
        jobs = _ctx().store.list_jobs(limit=100)
    except PersistenceError as e:
        logger.error(f"Job listing failed: {e}")
        return jsonify({"ok": False, "error": "Job store unavailable"}), 503
    return jsonify({
        "ok": True,
        "jobs": [
            {
                "job_id": j.id,
                "status": j.status,
                "player_id": j.player_id,
                "created_at": _iso(j.created_at),
                "updated_at": _iso(j.updated_at),
            }
            for j in jobs
        ],
    }), 200
