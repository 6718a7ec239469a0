"""Flask Blueprint registration."""


def register_blueprints(app):
    from .kpi_bp import kpi_bp
    from .forecast_bp import forecast_bp

    app.register_blueprint(kpi_bp)
    app.register_blueprint(forecast_bp)
