"""Main entrypoint: remembered login + Flask API served by waitress."""

import logging
import os
import threading

from . import web
from .config import ConfigManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("selfcare.main")


def run_web(port):
    """Run production web server (blocks)."""
    from waitress import serve
    serve(web.app, host="0.0.0.0", port=port, threads=8, _quiet=True)


def auto_login(config_mgr):
    """Log in with the stored customer id and password."""
    credentials = config_mgr.credentials()
    log.info("Portal: %s (customer: %s)", config_mgr.get("portal_url"), credentials.customer_id)
    outcome = web.login_with(credentials)
    if outcome.success:
        log.info("Logged in as %s (%s)", outcome.dashboard.name, outcome.dashboard.package)
    else:
        log.warning("Stored credentials rejected: %s", outcome.reason)


def main():
    data_dir = os.environ.get("DATA_DIR", "/data")
    config_mgr = ConfigManager(data_dir)

    log.info("SelfCare starting")
    web.init_config(config_mgr)

    if config_mgr.is_configured():
        threading.Thread(target=auto_login, args=(config_mgr,), daemon=True).start()
    else:
        log.info("No stored credentials - POST /api/login to sign in")

    web_port = config_mgr.get("web_port", 8766)
    log.info("Web API on port %d", web_port)
    try:
        run_web(web_port)
    except KeyboardInterrupt:
        log.info("Shutting down")
    finally:
        web.reset_session()


if __name__ == "__main__":
    main()
