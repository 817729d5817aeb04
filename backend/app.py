"""Prunarr application factory.

create_app() wires settings, logging, the database, the event bridge, the
persisted job queue and the scan scheduler, then mounts the API blueprints
and the OpenAPI docs. Workers and the scheduler thread only start outside
of tests.
"""

import json
import logging
import os
from logging.handlers import RotatingFileHandler

from flask import Flask

from extensions import socketio

TEXT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

SQLITE_PRAGMAS = ("PRAGMA journal_mode=WAL", "PRAGMA busy_timeout=5000")

_installed_handlers: list[logging.Handler] = []


class JSONLogFormatter(logging.Formatter):
    """One JSON object per line, tagged with the request id when there is one."""

    def format(self, record: logging.LogRecord) -> str:
        from flask import g, has_app_context

        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        if has_app_context() and getattr(g, "request_id", None):
            payload["request_id"] = g.request_id
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
        return json.dumps(payload, default=str)


class LiveLogHandler(logging.Handler):
    """Streams formatted records to Socket.IO clients as 'log_entry' events."""

    def __init__(self, sio):
        super().__init__()
        self._sio = sio

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._sio.emit("log_entry", {"level": record.levelname,
                                         "message": self.format(record)})
        except Exception:
            self.handleError(record)


def configure_logging(settings) -> None:
    """Attach the file and live handlers to the root logger.

    Calling it again (a second create_app() in tests) swaps the handlers.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=TEXT_LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)

    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    use_json = settings.log_format.lower() == "json"
    handlers: list[logging.Handler] = []
    try:
        directory = os.path.dirname(settings.log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = RotatingFileHandler(settings.log_file, maxBytes=LOG_FILE_BYTES,
                                           backupCount=LOG_FILE_BACKUPS, encoding="utf-8")
        file_handler.setFormatter(JSONLogFormatter() if use_json
                                  else logging.Formatter(TEXT_LOG_FORMAT))
        handlers.append(file_handler)
    except OSError as e:
        logging.getLogger(__name__).warning("Log file %s unavailable: %s", settings.log_file, e)

    live = LiveLogHandler(socketio)
    live.setFormatter(logging.Formatter(TEXT_LOG_FORMAT))
    handlers.append(live)

    for handler in handlers:
        handler.setLevel(level)
        root.addHandler(handler)
        _installed_handlers.append(handler)


def _engine_options(settings) -> dict:
    if settings.is_sqlite():
        # workers and the scheduler thread share one SQLite file
        return {"connect_args": {"check_same_thread": False, "timeout": 15}}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_pool_max_overflow,
        "pool_recycle": settings.db_pool_recycle,
        "pool_pre_ping": True,
    }


def _init_database(app, settings) -> None:
    from sqlalchemy import text

    from extensions import db as sa_db, migrate

    app.config["SQLALCHEMY_DATABASE_URI"] = settings.get_database_url()
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(settings)
    sa_db.init_app(app)
    migrate.init_app(app, sa_db, directory="db/migrations", render_as_batch=True)

    with app.app_context():
        import db.models  # noqa: F401
        sa_db.create_all()
        if settings.is_sqlite():
            with sa_db.engine.connect() as conn:
                for pragma in SQLITE_PRAGMAS:
                    conn.execute(text(pragma))
                conn.commit()


def _register_docs(app) -> None:
    from flask_swagger_ui import get_swaggerui_blueprint

    from openapi import register_all_paths

    register_all_paths(app)
    app.register_blueprint(get_swaggerui_blueprint(
        "/api/docs",
        "/api/v1/openapi.json",
        config={"app_name": "Prunarr API", "layout": "BaseLayout"},
    ))


def create_app(testing=False):
    """Build the Flask application.

    With testing=True no worker threads or scheduler thread are started;
    tests drain the queue with app.job_queue.run_pending().
    """
    from auth import init_auth
    from config import get_settings
    from error_handler import register_error_handlers

    settings = get_settings()
    configure_logging(settings)
    logger = logging.getLogger(__name__)

    app = Flask(__name__)
    app.config["TESTING"] = testing
    socketio.init_app(app, cors_allowed_origins="*", async_mode="threading")
    register_error_handlers(app)
    init_auth(app)
    _init_database(app, settings)

    with app.app_context():
        from events import init_event_system
        from job_queue import create_job_queue
        from maintenance import register_job_handlers
        from maintenance.scheduler import init_scan_scheduler
        from routes import register_blueprints

        init_event_system(app)
        app.job_queue = create_job_queue(app, poll_interval=settings.queue_poll_interval)
        register_job_handlers(app.job_queue, settings)
        init_scan_scheduler(app, timezone=settings.scheduler_timezone)
        register_blueprints(app)
        _register_docs(app)

    @socketio.on("connect")
    def on_connect():
        logger.debug("Socket.IO client connected")

    if not testing:
        _start_background(app, settings)

    logger.info("Prunarr ready (database: %s)", "sqlite" if settings.is_sqlite() else "external")
    return app


def _start_background(app, settings) -> None:
    """Start the queue workers (which first re-queue interrupted jobs) and the scheduler."""
    app.job_queue.start()
    if settings.scheduler_enabled:
        from maintenance.scheduler import start_scan_scheduler
        start_scan_scheduler(app)
    else:
        logging.getLogger(__name__).info("Scan scheduler disabled (PRUNARR_SCHEDULER_ENABLED=false)")


if __name__ == "__main__":
    from config import get_settings

    socketio.run(create_app(), host="0.0.0.0", port=get_settings().port,
                 debug=False, allow_unsafe_werkzeug=True)
