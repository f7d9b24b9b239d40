from flask import Blueprint, jsonify

bp = Blueprint("health", __name__)

@bp.get("/healthz")
def healthz():
    """
    Healthcheck
    ---
    tags:
      - Health
    responses:
      200:
        description: OK
    """
    return jsonify({"ok": True}), 200

@bp.get("/health")
def health():
    """
    Healthcheck (formato de los probes del supervisor)
    ---
    tags:
      - Health
    responses:
      200:
        description: OK
    """
    return jsonify({"status": "ok"}), 200
