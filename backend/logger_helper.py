import gzip
import logging
import os
import shutil
import time
from logging.handlers import TimedRotatingFileHandler

from fastapi import Request

from config import LOG_BACKUP_COUNT, LOG_FILE, LOG_LEVEL, LOG_MAX_SIZE

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class CompressingRotatingFileHandler(TimedRotatingFileHandler):
    """
    Weekly rotation (every Monday at midnight) that also rolls over once the
    file reaches ``max_bytes``. Rotated files are gzip-compressed.
    """

    def __init__(self, filename, max_bytes=LOG_MAX_SIZE, backup_count=LOG_BACKUP_COUNT):
        super().__init__(filename, when="W0", backupCount=backup_count, encoding="utf-8")
        self.max_bytes = max_bytes
        self.namer = lambda name: f"{name}.gz"
        self.rotator = self._compress

    @staticmethod
    def _compress(source, dest):
        if os.path.exists(source):
            with open(source, "rb") as f_in, gzip.open(dest, "wb") as f_out:
                shutil.copyfileobj(f_in, f_out)
            os.remove(source)

    def rotation_filename(self, default_name):
        # Size rollovers within one week share the week's date suffix
        name = super().rotation_filename(default_name)
        root, ext = os.path.splitext(name)
        counter = 1
        while os.path.exists(name):
            name = f"{root}.{counter}{ext}"
            counter += 1
        return name

    def shouldRollover(self, record):
        if os.path.exists(self.baseFilename) and os.path.getsize(self.baseFilename) >= self.max_bytes:
            return True
        return super().shouldRollover(record)


def setup_logging(log_file=LOG_FILE, level=LOG_LEVEL):
    """
    Configure the root logger with a console handler and, when ``log_file``
    is set, the compressing rotating file handler.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        file_handler = CompressingRotatingFileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root


def create_logging_middleware(app, logger):
    """
    Adds a middleware to log request & response time, IP, status and body size.
    Bodies themselves are not logged since enrollment uploads carry photos.
    """
    @app.middleware("http")
    async def log_request_response_time(request: Request, call_next):
        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "-"

        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        logger.info(
            f"IP={client_ip} | {request.method} {request.url.path} | Status={response.status_code} | "
            f"Time={process_time:.4f}s | RequestSize={request.headers.get('content-length', 0)}"
        )
        response.headers["X-Process-Time"] = str(round(process_time, 4))
        return response

    return app
