# backend/storefront/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import init_extensions
from .validation import DatabaseIntConverter


def create_app(config_overrides: dict | None = None, payment_gateway=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    init_extensions(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Tests inject a fake; production talks to the hosted processor
    from .services.payment_gateway import build_gateway
    app.extensions["payment_gateway"] = payment_gateway or build_gateway(app.config)

    # Route <int:...> ids share the database integer range
    app.url_map.converters["int"] = DatabaseIntConverter

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.products import products_bp, categories_bp
    from .routes.cart import cart_bp
    from .routes.checkout import checkout_bp
    from .routes.orders import orders_bp
    from .routes.users import users_bp
    from .routes.loyalty import loyalty_bp
    from .routes.raffles import raffles_bp
    from .routes.admin import admin_bp
    from .routes.webhooks import webhooks_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(loyalty_bp)
    app.register_blueprint(raffles_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhooks_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, Stripe-Signature"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
