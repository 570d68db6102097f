"""Demo data for a fresh FastFoodX database (`flask seed-db`)."""
import logging
from datetime import date, timedelta

from sqlalchemy.orm import Session

import services
from models import User

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "fastfoodx-demo"

RESTAURANTS = [
    {
        "owner": ("Priya Shah", "priya@burgerbarn.example", "07700 900101"),
        "name": "Burger Barn",
        "address": "12 High Street, London E1 6AN",
        "phone": "020 7946 0101",
        "menu": [
            ("Classic Burger", "Beef patty, cheddar, pickles", "8.50"),
            ("Veggie Burger", "Bean patty, avocado, salsa", "7.95"),
            ("Fries", "Skin-on, sea salt", "2.99"),
        ],
    },
    {
        "owner": ("Tom Okafor", "tom@wokexpress.example", "07700 900202"),
        "name": "Wok Express",
        "address": "5 Market Road, Leeds LS1 4DY",
        "phone": "0113 496 0202",
        "menu": [
            ("Chicken Chow Mein", "Egg noodles, beansprouts", "9.20"),
            ("Veg Spring Rolls", "Four rolls, sweet chilli dip", "4.50"),
        ],
    },
]

CUSTOMERS = [
    ("Alex Morgan", "alex@example.com", "07700 900303", "44 Elm Grove, London N1 9GU"),
    ("Sam Lee", "sam@example.com", "07700 900404", "3 Canal Street, Leeds LS2 7EZ"),
]

AGENTS = [
    ("Jordan Price", "jordan@couriers.example", "07700 900505", "London E1"),
    ("Casey Ward", "casey@couriers.example", "07700 900606", "Leeds LS1"),
]

PROMOTIONS = [
    ("WELCOME10", "10", -1, 30),
    ("SUMMER25", "25", -90, -30),
]


def seed_demo_data(s: Session, today: date | None = None) -> dict:
    """
    Inserts restaurants, menus, customers, agents, promotions and one
    delivered order. Does nothing when the admin user already exists.
    """
    today = today or date.today()
    if s.query(User).filter_by(email="admin@fastfoodx.example").first():
        logger.info("Demo data already present; skipping.")
        return {}

    admin = services.register_user(s, "FastFoodX Admin", "admin@fastfoodx.example", DEMO_PASSWORD, role="admin")

    menus = []
    for entry in RESTAURANTS:
        name, email, phone = entry["owner"]
        owner = services.register_user(s, name, email, DEMO_PASSWORD, role="restaurant_owner", phone=phone)
        restaurant = services.create_restaurant(s, owner.id, entry["name"], entry["address"], entry["phone"])
        for item_name, description, price in entry["menu"]:
            menus.append(services.add_menu_item(s, restaurant.id, item_name, price, description))

    customers = [
        services.register_user(s, name, email, DEMO_PASSWORD, phone=phone, address=address)
        for name, email, phone, address in CUSTOMERS
    ]
    agents = [
        services.register_user(s, name, email, DEMO_PASSWORD, role="delivery_agent", phone=phone, location=loc)
        for name, email, phone, loc in AGENTS
    ]

    for code, discount, start, end in PROMOTIONS:
        status = "ACTIVE" if end >= 0 else "EXPIRED"
        services.create_promotion(s, code, discount, today + timedelta(days=start), today + timedelta(days=end), status)

    # one order walked through its whole lifecycle
    burger, fries = menus[0], menus[2]
    customer = customers[0].customer
    order = services.place_order(s, customer.id, [(burger.id, 2), (fries.id, 1)], promo_code="WELCOME10")
    services.capture_payment(s, order.id, "CARD")
    delivery = services.assign_delivery(s, order.id)
    services.change_delivery_status(s, delivery.id, "PICKED_UP")
    services.change_delivery_status(s, delivery.id, "DELIVERED")
    services.submit_review(s, customer.id, burger.restaurant_id, 5, "Hot and fast.")

    s.commit()
    counts = {
        "users": 1 + len(RESTAURANTS) + len(customers) + len(agents),
        "menus": len(menus),
        "orders": 1,
    }
    logger.info("Seeded demo data: %s (admin id %s)", counts, admin.id)
    return counts
