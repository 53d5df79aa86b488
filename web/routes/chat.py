"""Chat API routes: one POST answered with one SSE stream."""

from flask import Blueprint, Response, current_app, jsonify, request

from agent.exceptions import MessageFormatError
from agent.messages import ChatRequest, parse_chat_messages
from web.app import ChatRun
from web.auth import authenticated_caller

chat_bp = Blueprint("chat", __name__)


@chat_bp.route("/chat", methods=["POST"])
def chat():
    """Validate the request, start the run, and stream its events."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    try:
        messages = parse_chat_messages(data.get("messages"))
    except MessageFormatError as e:
        return jsonify({"error": str(e)}), 400

    profile = data.get("callerProfile") or data.get("userProfile") or {}
    if not isinstance(profile, dict):
        return jsonify({"error": "callerProfile must be an object"}), 400

    caller_id = authenticated_caller() or str(profile.get("id") or "").strip()
    if not caller_id:
        return jsonify({"error": "callerProfile.id is required"}), 400

    chat_request = ChatRequest(
        messages=messages,
        conversation_id=str(data.get("conversationId") or ""),
        caller_id=caller_id,
        caller_profile=profile,
    )
    channel = ChatRun(current_app.config["chat_service"], chat_request).start()

    return Response(
        channel.iter_sse(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@chat_bp.route("/health", methods=["GET"])
def health():
    config = current_app.config["agent_config"]
    return jsonify({
        "status": "ok",
        "model": config.provider.model,
        "provider_configured": bool(config.provider.api_key),
        "search_configured": bool(config.search.api_key),
    })
