import logging

from flask import Flask, g, request
from dotenv import load_dotenv

from app.facturador.config import load_config
from app.facturador.db import init_db, teardown_db_session
from app.facturador.errors import register_error_handlers
from app.facturador.routes import bp as routes_bp
from app.facturador.auth import bp as auth_bp, load_current_user
from app.facturador.modules.admin_users.api import bp as admin_users_bp
from app.facturador.modules.roles.api import bp as roles_bp
from app.facturador.modules.waiters.api import bp as waiters_bp
from app.facturador.modules.catalog.api import bp as catalog_bp
from app.facturador.modules.inventory.api import bp as inventory_bp
from app.facturador.modules.sequences.api import bp as sequences_bp
from app.facturador.modules.cash_registers.api import bp as cash_registers_bp
from app.facturador.modules.invoices.api import bp as invoices_bp
from app.facturador.modules.orders.api import bp as orders_bp
from app.facturador.modules.tables.api import bp as tables_bp
from app.facturador.modules.cxc.api import bp as cxc_bp
from app.facturador.modules.preferences.api import bp as preferences_bp
from app.facturador.modules.reports.api import bp as reports_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        secret = str(app.config.get("SECRET_KEY") or "")
        if secret in ("", "change-me") or len(secret) < 32:
            raise RuntimeError("SESSION_SECRET must be set to a value of at least 32 characters in production.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    register_error_handlers(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(admin_users_bp, url_prefix="/api/admin-users")
    app.register_blueprint(roles_bp, url_prefix="/api/roles")
    app.register_blueprint(waiters_bp, url_prefix="/api")
    app.register_blueprint(catalog_bp, url_prefix="/api")
    app.register_blueprint(inventory_bp, url_prefix="/api/inventario")
    app.register_blueprint(sequences_bp, url_prefix="/api/preferencias/consecutivos")
    app.register_blueprint(cash_registers_bp, url_prefix="/api/cajas")
    app.register_blueprint(invoices_bp, url_prefix="/api/invoices")
    app.register_blueprint(orders_bp, url_prefix="/api/orders")
    app.register_blueprint(tables_bp, url_prefix="/api")
    app.register_blueprint(cxc_bp, url_prefix="/api")
    app.register_blueprint(preferences_bp, url_prefix="/api/preferencias")
    app.register_blueprint(reports_bp, url_prefix="/api/reportes")

    def _load_user_wrapper():
        if request.path.startswith(("/healthz", "/api/health")):
            g.current_user = None
            g.session_info = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    logging.getLogger(__name__).info(
        "create_app() complete; mode=%s",
        "restaurant" if app.config.get("RESTAURANT_MODE") else "retail",
    )

    return app
