"""Flask application factory for the Circular Nest archive front-end."""
import os
import threading
from typing import Optional
from urllib.parse import urlparse

import click
from flask import Flask, flash, redirect, render_template, request, url_for
from flask_login import logout_user
from dotenv import load_dotenv
from utils.logger import init_logging
from utils.security import apply_security_headers
from utils.api_client import CircularNestAPI, SessionExpiredError
from utils.auto_refresh import AutoRefresher
from utils.dashboard_feed import load_review_queue
from extensions import csrf, login_manager, nest


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(403)
    def forbidden(error):
        app.logger.warning("403 Forbidden", extra={"path": request.path, "method": request.method})
        return render_template("errors/403.html"), 403

    @app.errorhandler(404)
    def not_found_error(error):
        app.logger.warning("404 Not Found", extra={"path": request.path, "method": request.method})
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error")
        return render_template("errors/500.html"), 500

    @app.errorhandler(SessionExpiredError)
    def session_expired(error):
        # The API client has already cleared the token; drop the rest of the signed-in state.
        nest.forget_owner()
        nest.auth.logout()
        logout_user()
        app.logger.info("Session expired", extra={"path": request.path, "method": request.method})
        flash(error.message, "warning")
        return redirect(url_for("auth.login"))


def register_cli(app: Flask) -> None:
    @app.cli.command("review-watch")
    @click.option("--token", envvar="REVIEW_WATCH_TOKEN", required=True, help="Admin bearer token.")
    @click.option("--interval", default=None, type=float, help="Seconds between polls.")
    @click.option("--iterations", default=0, type=int, help="Stop after N polls (0 runs until interrupted).")
    def review_watch(token, interval, iterations):
        """Poll the pending review queue and log its size (run under a supervisor)."""
        api = CircularNestAPI(
            app.config["API_BASE_URL"],
            token_provider=lambda: token,
            timeout=app.config.get("API_TIMEOUT_SECONDS", 30),
        )
        done = threading.Event()

        def poll():
            view = load_review_queue(api)
            app.logger.info(
                "review_queue_polled",
                extra={"pending": len(view.buckets.pending), "failed_sources": sorted(view.errors)},
            )
            click.echo(f"pending={len(view.buckets.pending)}")
            if iterations and refresher.runs + 1 >= iterations:
                done.set()

        refresher = AutoRefresher(interval or app.config.get("AUTO_REFRESH_SECONDS", 10), poll)
        refresher.refresh_now()
        if iterations == 1:
            return
        refresher.enable()
        try:
            done.wait()
        except KeyboardInterrupt:
            pass
        finally:
            refresher.disable()

    @app.cli.command("api-health")
    def api_health():
        """Call the API health endpoint and print the result."""
        api = CircularNestAPI(app.config["API_BASE_URL"], timeout=app.config.get("API_TIMEOUT_SECONDS", 30))
        body = api.health_check()
        click.echo(f"{app.config['API_BASE_URL']}: {body.get('status') or body.get('message') or 'ok'}")


def create_app(config_name: Optional[str] = None, http_session=None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    # Optional instance-specific overrides
    app.config.from_pyfile("config.py", silent=True)

    logger = init_logging(app)
    app.logger = logger

    csrf.init_app(app)
    nest.init_app(app, http_session=http_session)
    login_manager.init_app(app)
    login_manager.login_view = "auth.login"
    login_manager.login_message_category = "warning"

    @login_manager.user_loader
    def load_user(user_id):
        if not user_id:
            return None
        user = nest.auth.current_user()
        if user is None or str(user.id) != str(user_id):
            return None
        return user

    from routes import main_bp, auth_bp, circulars_bp, submissions_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(circulars_bp)
    app.register_blueprint(submissions_bp)

    @app.route("/favicon.ico")
    def favicon():
        """Serve a favicon if present; otherwise return an empty response to avoid 404 noise."""
        static_ico = os.path.join(app.static_folder or "static", "favicon.ico")
        if os.path.exists(static_ico):
            return app.send_static_file("favicon.ico")
        return "", 204

    register_cli(app)
    register_error_handlers(app)

    api_url = urlparse(app.config["API_BASE_URL"])
    api_origin = f"{api_url.scheme}://{api_url.netloc}" if api_url.netloc else None

    @app.context_processor
    def inject_global_context():
        return {
            "auto_refresh_seconds": app.config.get("AUTO_REFRESH_SECONDS", 10),
            "api_base_url": app.config["API_BASE_URL"],
        }

    @app.after_request
    def _after_request(response):
        return apply_security_headers(
            response,
            force_https=app.config.get("PREFERRED_URL_SCHEME") == "https",
            api_origin=api_origin,
        )

    return app


# Expose the Flask application for WSGI servers (e.g., gunicorn app:app).
app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))
    app.run(host="0.0.0.0", port=port, use_reloader=False)
