from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    String, Integer, Numeric, Boolean, Text, Date, DateTime, ForeignKey,
    CheckConstraint, MetaData, func,
)


# constraint names are stable across dialects so violations can be reported by name
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

ROLES = ("customer", "restaurant_owner", "delivery_agent", "admin")
ORDER_STATUSES = ("PLACED", "CONFIRMED", "PREPARING", "OUT_FOR_DELIVERY", "DELIVERED", "CANCELLED")
PAYMENT_STATUSES = ("PENDING", "COMPLETED", "FAILED", "REFUNDED")
DELIVERY_STATUSES = ("ASSIGNED", "PICKED_UP", "DELIVERED", "FAILED")
PROMOTION_STATUSES = ("ACTIVE", "INACTIVE", "EXPIRED")
PAYMENT_METHODS = ("CARD", "CASH", "WALLET", "UPI")


def _one_of(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f'"{column}" IN ({quoted})'


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class User(Base):
    __tablename__ = "Users"
    __table_args__ = (
        CheckConstraint(_one_of("Role", ROLES), name="role"),
    )

    id: Mapped[int] = mapped_column("UserID", Integer, primary_key=True)
    name: Mapped[str] = mapped_column("Name", String(120), nullable=False)
    email: Mapped[str] = mapped_column("Email", String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column("HashedPassword", String(255), nullable=False)
    role: Mapped[str] = mapped_column("Role", String(20), default="customer", nullable=False)
    phone: Mapped[str | None] = mapped_column("Phone", String(20), nullable=True)

    customer = relationship("Customer", back_populates="user", uselist=False,
                            cascade="all, delete-orphan", passive_deletes=True)
    agent = relationship("DeliveryAgent", back_populates="user", uselist=False,
                         cascade="all, delete-orphan", passive_deletes=True)
    restaurant = relationship("Restaurant", back_populates="owner", uselist=False, passive_deletes="all")
    reports = relationship("Report", back_populates="author", passive_deletes="all")


class Customer(Base):
    __tablename__ = "Customers"

    id: Mapped[int] = mapped_column("CustomerID", Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        "UserID", ForeignKey("Users.UserID", ondelete="CASCADE"), unique=True, nullable=False
    )
    address: Mapped[str | None] = mapped_column("Address", String(255), nullable=True)

    user = relationship("User", back_populates="customer")
    orders = relationship("Order", back_populates="customer", passive_deletes="all")
    reviews = relationship("Review", back_populates="customer",
                           cascade="all, delete-orphan", passive_deletes=True)


class Restaurant(Base):
    __tablename__ = "Restaurants"

    id: Mapped[int] = mapped_column("RestaurantID", Integer, primary_key=True)
    name: Mapped[str] = mapped_column("Name", String(150), nullable=False)
    address: Mapped[str | None] = mapped_column("Address", String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column("Phone", String(20), nullable=True)
    owner_id: Mapped[int] = mapped_column(
        "OwnerID", ForeignKey("Users.UserID", ondelete="RESTRICT"), unique=True, nullable=False
    )

    owner = relationship("User", back_populates="restaurant")
    # RESTRICT: the database refuses to drop a restaurant that still has menu rows
    menus = relationship("Menu", back_populates="restaurant", passive_deletes="all")
    reviews = relationship("Review", back_populates="restaurant",
                           cascade="all, delete-orphan", passive_deletes=True)


class Menu(Base):
    __tablename__ = "Menus"
    __table_args__ = (
        CheckConstraint('"Price" >= 0', name="price_non_negative"),
    )

    id: Mapped[int] = mapped_column("MenuID", Integer, primary_key=True)
    item_name: Mapped[str] = mapped_column("ItemName", String(150), nullable=False)
    description: Mapped[str | None] = mapped_column("Description", String(500), nullable=True)
    price: Mapped[Decimal] = mapped_column("Price", Numeric(10, 2), nullable=False)
    restaurant_id: Mapped[int] = mapped_column(
        "RestaurantID", ForeignKey("Restaurants.RestaurantID", ondelete="RESTRICT"), nullable=False, index=True
    )

    restaurant = relationship("Restaurant", back_populates="menus")


class Promotion(Base):
    __tablename__ = "Promotions"
    __table_args__ = (
        CheckConstraint('"DiscountPercentage" >= 0 AND "DiscountPercentage" <= 100', name="discount_range"),
        CheckConstraint('"ValidTo" >= "ValidFrom"', name="valid_window"),
        CheckConstraint(_one_of("Status", PROMOTION_STATUSES), name="status"),
    )

    id: Mapped[int] = mapped_column("PromoID", Integer, primary_key=True)
    code: Mapped[str] = mapped_column("Code", String(40), unique=True, nullable=False)
    discount_percentage: Mapped[Decimal] = mapped_column("DiscountPercentage", Numeric(5, 2), nullable=False)
    valid_from: Mapped[date] = mapped_column("ValidFrom", Date, nullable=False)
    valid_to: Mapped[date] = mapped_column("ValidTo", Date, nullable=False)
    status: Mapped[str] = mapped_column("Status", String(20), default="ACTIVE", nullable=False)

    orders = relationship("Order", back_populates="promotion", passive_deletes=True)


class Order(Base):
    __tablename__ = "Orders"
    __table_args__ = (
        CheckConstraint('"TotalAmount" >= 0', name="total_non_negative"),
        CheckConstraint(_one_of("Status", ORDER_STATUSES), name="status"),
    )

    id: Mapped[int] = mapped_column("OrderID", Integer, primary_key=True)
    order_date: Mapped[datetime] = mapped_column("OrderDate", DateTime, server_default=func.now(), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column("TotalAmount", Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column("Status", String(30), default="PLACED", nullable=False)
    customer_id: Mapped[int] = mapped_column(
        "CustomerID", ForeignKey("Customers.CustomerID", ondelete="RESTRICT"), nullable=False, index=True
    )
    promo_id: Mapped[int | None] = mapped_column(
        "PromoID", ForeignKey("Promotions.PromoID", ondelete="SET NULL"), nullable=True
    )

    customer = relationship("Customer", back_populates="orders")
    promotion = relationship("Promotion", back_populates="orders")
    items = relationship("OrderItem", back_populates="order",
                         cascade="all, delete-orphan", passive_deletes=True)
    payment = relationship("Payment", back_populates="order", uselist=False, passive_deletes="all")
    delivery = relationship("Delivery", back_populates="order", uselist=False, passive_deletes="all")


class OrderItem(Base):
    __tablename__ = "OrderItems"
    __table_args__ = (
        CheckConstraint('"Quantity" > 0', name="quantity_positive"),
        CheckConstraint('"ItemPrice" >= 0', name="item_price_non_negative"),
    )

    id: Mapped[int] = mapped_column("OrderItemID", Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        "OrderID", ForeignKey("Orders.OrderID", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_id: Mapped[int] = mapped_column(
        "MenuID", ForeignKey("Menus.MenuID", ondelete="RESTRICT"), nullable=False
    )
    quantity: Mapped[int] = mapped_column("Quantity", Integer, default=1, nullable=False)
    # price snapshot taken when the order is placed
    item_price: Mapped[Decimal] = mapped_column("ItemPrice", Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    menu = relationship("Menu")


class Payment(Base):
    __tablename__ = "Payments"
    __table_args__ = (
        CheckConstraint('"Amount" >= 0', name="amount_non_negative"),
        CheckConstraint(_one_of("Status", PAYMENT_STATUSES), name="status"),
        CheckConstraint(_one_of("PaymentMethod", PAYMENT_METHODS), name="method"),
    )

    id: Mapped[int] = mapped_column("PaymentID", Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        "OrderID", ForeignKey("Orders.OrderID", ondelete="RESTRICT"), unique=True, nullable=False
    )
    payment_method: Mapped[str] = mapped_column("PaymentMethod", String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column("Amount", Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column("Status", String(20), default="PENDING", nullable=False)
    transaction_id: Mapped[str] = mapped_column("TransactionID", String(100), unique=True, nullable=False)
    timestamp: Mapped[datetime] = mapped_column("Timestamp", DateTime, server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="payment")


class DeliveryAgent(Base):
    __tablename__ = "DeliveryAgents"

    id: Mapped[int] = mapped_column("AgentID", Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        "UserID", ForeignKey("Users.UserID", ondelete="CASCADE"), unique=True, nullable=False
    )
    is_available: Mapped[bool] = mapped_column("IsAvailable", Boolean, default=True, nullable=False)
    current_location: Mapped[str | None] = mapped_column("CurrentLocation", String(255), nullable=True)

    user = relationship("User", back_populates="agent")
    deliveries = relationship("Delivery", back_populates="agent", passive_deletes="all")


class Delivery(Base):
    __tablename__ = "Deliveries"
    __table_args__ = (
        CheckConstraint(_one_of("DeliveryStatus", DELIVERY_STATUSES), name="delivery_status"),
    )

    id: Mapped[int] = mapped_column("DeliveryID", Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        "OrderID", ForeignKey("Orders.OrderID", ondelete="RESTRICT"), unique=True, nullable=False
    )
    agent_id: Mapped[int] = mapped_column(
        "AgentID", ForeignKey("DeliveryAgents.AgentID", ondelete="RESTRICT"), nullable=False, index=True
    )
    delivery_status: Mapped[str] = mapped_column("DeliveryStatus", String(20), default="ASSIGNED", nullable=False)
    # set once the delivery reaches a final state
    delivery_date: Mapped[datetime | None] = mapped_column("DeliveryDate", DateTime, nullable=True)
    estimated_delivery_time: Mapped[datetime | None] = mapped_column("EstimatedDeliveryTime", DateTime, nullable=True)

    order = relationship("Order", back_populates="delivery")
    agent = relationship("DeliveryAgent", back_populates="deliveries")


class Review(Base):
    __tablename__ = "Reviews"
    __table_args__ = (
        CheckConstraint('"Rating" >= 1 AND "Rating" <= 5', name="rating_range"),
    )

    id: Mapped[int] = mapped_column("ReviewID", Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(
        "CustomerID", ForeignKey("Customers.CustomerID", ondelete="CASCADE"), nullable=False
    )
    restaurant_id: Mapped[int] = mapped_column(
        "RestaurantID", ForeignKey("Restaurants.RestaurantID", ondelete="CASCADE"), nullable=False, index=True
    )
    rating: Mapped[int] = mapped_column("Rating", Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column("Comment", Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column("Timestamp", DateTime, server_default=func.now(), nullable=False)

    customer = relationship("Customer", back_populates="reviews")
    restaurant = relationship("Restaurant", back_populates="reviews")


class Report(Base):
    __tablename__ = "Reports"

    id: Mapped[int] = mapped_column("ReportID", Integer, primary_key=True)
    report_type: Mapped[str] = mapped_column("ReportType", String(50), nullable=False)
    generated_date: Mapped[datetime] = mapped_column("GeneratedDate", DateTime, server_default=func.now(), nullable=False)
    generated_by: Mapped[int] = mapped_column(
        "GeneratedBy", ForeignKey("Users.UserID", ondelete="RESTRICT"), nullable=False
    )
    summary: Mapped[str | None] = mapped_column("Summary", String(500), nullable=True)
    # JSON text
    details: Mapped[str | None] = mapped_column("Details", Text, nullable=True)

    author = relationship("User", back_populates="reports")
