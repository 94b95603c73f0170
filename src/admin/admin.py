"""
Micropub admin entry point.

Embeds Gunicorn to run the admin Flask application as a production-ready
WSGI server:

    micropub-admin -> admin.main() -> Gunicorn -> web.app.create_app()

Functions:
    main() -> None:
        Entry point for the console script. Configures logging, loads
        config.yml, builds the session store and clients, and serves the
        app on ``server.bind``.

Example:
    Run via console script:
        $ micropub-admin
        Starting Gunicorn for the Micropub admin
        Gunicorn server is ready to accept connections
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

logger = logging.getLogger(__name__)

LOG_FILE = "micropub-admin.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(debug: bool = False, log_file: str = LOG_FILE) -> None:
    """Send all logging to a 10MB rotating file and stdout."""
    log_level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers to avoid duplicates (e.g., from gunicorn)
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    log_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=3
    )
    log_handler.setLevel(log_level)
    log_handler.setFormatter(formatter)
    root_logger.addHandler(log_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


def _debug_requested() -> bool:
    if os.environ.get("MICROPUB_ADMIN_DEBUG", "").lower() in ("true", "1", "yes"):
        return True
    return "--debug" in sys.argv[1:]


def main(debug: bool = False) -> None:
    """Main entry point for the micropub-admin console command.

    Args:
        debug: Enable debug logging and disable the worker timeout for
               breakpoint debugging. Can also be set via --debug or the
               MICROPUB_ADMIN_DEBUG environment variable.
    """
    from gunicorn.app.base import BaseApplication
    from config import get_http_timeout, load_config
    from web.app import create_app

    debug = debug or _debug_requested()
    configure_logging(debug)
    if debug:
        logger.info("Debug mode enabled: verbose logging and worker timeout disabled for breakpoint debugging")

    logger.info("Loading configuration from config.yml")
    config = load_config()

    indieauth_config = config.get("indieauth", {})
    if not indieauth_config.get("client_id") or not indieauth_config.get("redirect_uri"):
        logger.warning("indieauth.client_id or indieauth.redirect_uri is not configured; logins will fail")
    if not indieauth_config.get("token_endpoint"):
        logger.info("No indieauth.token_endpoint configured; access token verification disabled")
    logger.info(f"Outbound HTTP timeout: {get_http_timeout(config)}s")

    app = create_app(config)

    config_path = os.path.join(os.path.dirname(__file__), "..", "web", "gunicorn_config.py")
    bind = config.get("server", {}).get("bind")

    class StandaloneApplication(BaseApplication):
        """Custom Gunicorn application for embedding within the admin entry point."""

        def __init__(self, app, options=None):
            self.options = options or {}
            self.application = app
            super().__init__()

        def load_config(self):
            config_file = self.options.get("config")
            if config_file:
                self.cfg.set("config", config_file)
                with open(config_file, "r") as f:
                    config_code = f.read()
                config_namespace = {}
                exec(config_code, config_namespace)
                for key, value in config_namespace.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

            if self.options.get("bind"):
                self.cfg.set("bind", self.options["bind"])

            if self.options.get("debug"):
                self.cfg.set("timeout", 0)
                self.cfg.set("loglevel", "debug")

        def load(self):
            return self.application

    options = {
        "config": config_path,
        "bind": bind,
        "debug": debug,
    }
    StandaloneApplication(app, options).run()


# Allow running as a script for development/testing
if __name__ == "__main__":
    main()
