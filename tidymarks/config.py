import os


class Config:
    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_IMPORT_BYTES", str(50 * 1024 * 1024)))
    SCAN_CONCURRENCY = int(os.environ.get("SCAN_CONCURRENCY", "8"))
    SCAN_TIMEOUT_MS = int(os.environ.get("SCAN_TIMEOUT_MS", "8000"))
    SCAN_FLUSH_INTERVAL_MS = int(os.environ.get("SCAN_FLUSH_INTERVAL_MS", "200"))
    LINK_PROBER_URL = os.environ.get("LINK_PROBER_URL", "")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SCAN_FLUSH_INTERVAL_MS = 10
    LINK_PROBER_URL = ""
