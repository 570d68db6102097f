import pytest

import services
from app import create_app
from config import TestConfig
from sql_db import SessionLocal, get_engine

PASSWORD = "correct-horse"


@pytest.fixture
def app(tmp_path):
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'fastfoodx.db'}"

    app = create_app(FileConfig)
    yield app
    get_engine().dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    with SessionLocal() as s:
        yield s


@pytest.fixture
def world(session):
    """An owner with a two-item restaurant, a customer, an available agent and an admin."""
    owner = services.register_user(session, "Olive Owner", "olive@example.com", PASSWORD, role="restaurant_owner")
    restaurant = services.create_restaurant(session, owner.id, "Burger Barn", "12 High Street", "020 7946 0101")
    burger = services.add_menu_item(session, restaurant.id, "Classic Burger", "8.50", "Beef patty")
    fries = services.add_menu_item(session, restaurant.id, "Fries", "2.99")
    customer_user = services.register_user(session, "Cara Customer", "cara@example.com", PASSWORD,
                                           address="44 Elm Grove")
    agent_user = services.register_user(session, "Dev Driver", "dev@example.com", PASSWORD,
                                        role="delivery_agent", location="London E1")
    admin = services.register_user(session, "Ada Admin", "ada@example.com", PASSWORD, role="admin")
    session.commit()
    return {
        "owner": owner,
        "restaurant": restaurant,
        "burger": burger,
        "fries": fries,
        "customer": customer_user.customer,
        "agent": agent_user.agent,
        "admin": admin,
    }
