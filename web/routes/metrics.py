"""Metrics API routes."""

from flask import Blueprint, current_app, jsonify

metrics_bp = Blueprint("metrics", __name__)


@metrics_bp.route("/metrics", methods=["GET"])
def get_metrics():
    """Return summaries of the most recent chat runs."""
    config = current_app.config["agent_config"]
    if not config.telemetry.enabled:
        return jsonify({"enabled": False, "runs": []})

    service = current_app.config["chat_service"]
    return jsonify({
        "enabled": True,
        "log_dir": config.telemetry.log_dir,
        "runs": service.recent_runs(),
    })
