import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from washgate.config import DevelopmentConfig
from washgate.extensions import db, migrate
from washgate.errors import ServiceError


def create_app(config_class=DevelopmentConfig):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Register Blueprints
    from washgate.api.routes.auth import auth_bp
    from washgate.api.routes.bookings import bookings_bp
    from washgate.api.routes.sessions import sessions_bp
    from washgate.api.routes.machines import machines_bp
    from washgate.api.routes.issues import issues_bp
    from washgate.api.routes.rfid import rfid_bp
    from washgate.api.routes.admin import admin_bp
    from washgate.api.routes.notifications import notifications_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(bookings_bp, url_prefix='/api/bookings')
    app.register_blueprint(sessions_bp, url_prefix='/api/sessions')
    app.register_blueprint(machines_bp, url_prefix='/api/machines')
    app.register_blueprint(issues_bp, url_prefix='/api/issues')
    app.register_blueprint(rfid_bp, url_prefix='/api/rfid')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.register_blueprint(notifications_bp, url_prefix='/api/notifications')

    @app.errorhandler(ServiceError)
    def handle_service_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return e
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return jsonify({'error': 'Server Error'}), 500

    @app.route('/health')
    def health():
        return {"status": "ok", "app": "WashGate"}

    @app.cli.command('reconcile')
    def reconcile():
        """Run every reconciliation sweep once."""
        from washgate.services.reconciliation import ReconciliationService
        for name, count in ReconciliationService.run_all().items():
            click.echo(f"{name}: {count}")

    if app.config.get('SCHEDULER_ENABLED'):
        from washgate.scheduler import ReconciliationScheduler
        app.extensions['washgate.scheduler'] = ReconciliationScheduler.for_app(app)
        app.extensions['washgate.scheduler'].start()

    return app
