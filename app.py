import logging

import click
from flask import Flask

from config import Config
from routes_api import api
from seed import seed_demo_data
from sql_db import SessionLocal, init_engine, init_db, drop_db, render_ddl


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    if not app.debug and not app.testing:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    init_engine(app.config["SQLALCHEMY_DATABASE_URI"], echo=app.config.get("SQLALCHEMY_ECHO", False))

    # create tables for demo
    init_db()

    app.register_blueprint(api)
    register_commands(app)
    return app


def register_commands(app: Flask):
    @app.cli.command("init-db")
    def init_db_command():
        """Create all FastFoodX tables."""
        init_db()
        click.echo("Tables created.")

    @app.cli.command("drop-db")
    @click.confirmation_option(prompt="Drop every FastFoodX table?")
    def drop_db_command():
        """Drop all FastFoodX tables."""
        drop_db()
        click.echo("Tables dropped.")

    @app.cli.command("seed-db")
    def seed_db_command():
        """Load demo restaurants, users and one delivered order."""
        with SessionLocal() as s:
            counts = seed_demo_data(s)
        if counts:
            click.echo(f"Seeded {counts['users']} users, {counts['menus']} menu items, {counts['orders']} order.")
        else:
            click.echo("Demo data already present.")

    @app.cli.command("dump-schema")
    @click.option("--dialect", default="sqlite", show_default=True,
                  type=click.Choice(["sqlite", "postgresql"]))
    def dump_schema_command(dialect):
        """Print the CREATE TABLE script."""
        click.echo(render_ddl(dialect), nl=False)


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
