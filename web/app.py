"""Flask application factory for the ERP data chat service."""

import asyncio
import threading

from flask import Flask
from flask_cors import CORS

from agent.chat_service import ChatService
from agent.config import AgentConfig
from agent.messages import ChatRequest
from agent.stream_channel import StreamChannel
from web.auth import init_auth


def create_app(config: AgentConfig, chat_service: ChatService | None = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    CORS(app)

    app.config["agent_config"] = config
    app.config["chat_service"] = chat_service or ChatService(config)

    init_auth(app, config.auth)

    from web.routes.chat import chat_bp
    from web.routes.metrics import metrics_bp

    app.register_blueprint(chat_bp, url_prefix="/api")
    app.register_blueprint(metrics_bp, url_prefix="/api")

    return app


class ChatRun:
    """Runs one chat request on a worker thread with its own event loop."""

    def __init__(self, service: ChatService, chat_request: ChatRequest):
        self.service = service
        self.chat_request = chat_request
        self.channel: StreamChannel = service.new_channel()
        self.thread: threading.Thread | None = None

    def start(self) -> StreamChannel:
        def run_in_thread():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                loop.run_until_complete(self.service.handle(self.chat_request, self.channel))
            finally:
                # handle() always closes the channel; this covers a crash before it could
                self.channel.close()
                loop.close()

        self.thread = threading.Thread(target=run_in_thread, daemon=True)
        self.thread.start()
        return self.channel
