"""Flask application factory and a background runner for CLI use."""

import logging
import socket
import threading

from flask import Flask
from flask_cors import CORS

from animegate.config import Config, get_config

log = logging.getLogger(__name__)


def create_app(config: Config | None = None) -> Flask:
    from animegate import api, proxy

    config = config or get_config()

    app = Flask(__name__)
    app.config["ANIMEGATE"] = config
    app.extensions["animegate_http"] = proxy.new_session()
    CORS(
        app,
        origins="*",
        methods=["GET", "OPTIONS"],
        allow_headers="*",
        expose_headers=["Content-Type", "Content-Length", "Content-Range", "Accept-Ranges"],
    )

    proxy.register(app, config)
    app.register_blueprint(api.bp)

    logging.getLogger("werkzeug").setLevel(logging.ERROR)
    return app


def _free_port(host: str) -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, 0))
        return sock.getsockname()[1]
    finally:
        sock.close()


class ProxyServer:
    """Runs the app on a daemon thread so a local player can use the proxy."""

    def __init__(self, config: Config | None = None):
        self.config = config or get_config()
        self.port = 0
        self.server_thread = None

    @property
    def base_url(self) -> str:
        return f"http://{self.config.host}:{self.port}"

    def start(self, port: int = 0) -> int:
        if self.server_thread is not None:
            return self.port

        self.port = port or _free_port(self.config.host)
        app = create_app(self.config)

        def run_app():
            # use_reloader=False keeps the server on this thread
            app.run(host=self.config.host, port=self.port, threaded=True, use_reloader=False)

        self.server_thread = threading.Thread(target=run_app, daemon=True)
        self.server_thread.start()

        log.info("Proxy server started on %s", self.base_url)
        return self.port

    def proxied(self, url: str, headers: dict | None = None) -> str:
        """Absolute proxy URL for an upstream resource."""
        from animegate.playlist import make_proxy_url

        return self.base_url + make_proxy_url(url, self.config.proxy_path, headers)
