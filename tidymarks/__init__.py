from flask import Flask

from tidymarks.api import api_bp
from tidymarks.config import Config
from tidymarks.services.link_probe import RemoteLinkProber, probe_link
from tidymarks.services.scan_jobs import ScanOrchestrator
from tidymarks.services.session import SESSION_EXTENSION, DocumentSession


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    prober_url = (app.config.get("LINK_PROBER_URL") or "").strip()
    orchestrator = ScanOrchestrator(
        prober=RemoteLinkProber(prober_url) if prober_url else probe_link,
        concurrency=app.config["SCAN_CONCURRENCY"],
        timeout_ms=app.config["SCAN_TIMEOUT_MS"],
        flush_interval=app.config["SCAN_FLUSH_INTERVAL_MS"] / 1000,
    )
    app.extensions[SESSION_EXTENSION] = DocumentSession(orchestrator)

    app.register_blueprint(api_bp)
    return app
