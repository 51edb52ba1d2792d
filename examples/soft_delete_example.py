#!/usr/bin/env python3
"""
Soft Delete Example - softcascade

Demonstrates cascading soft deletes on an order with its items:
- session.delete() stamps the order and its items with one timestamp
- items deleted earlier keep their own timestamp
- restoring the order restores only the items deleted with it
- deleting an already expired record removes it physically
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, ForeignKey, Integer, String, create_engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from softcascade.soft_delete import (
    SoftDeleteEvent,
    SoftDeleteMixin,
    install_soft_delete,
    last_flush_report,
)

Base = declarative_base()


class Order(Base, SoftDeleteMixin):
    """Customer order that cascades soft deletes to its items."""

    __tablename__ = "orders"
    __soft_delete__ = {"hard_delete": False}
    __soft_delete_cascade__ = ["items"]

    id = Column(Integer, primary_key=True)
    number = Column(String, nullable=False)
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")


class OrderItem(Base, SoftDeleteMixin):
    """Order line; hard deleted once its soft deletion has expired."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"))
    sku = Column(String, nullable=False)
    order = relationship("Order", back_populates="items")


class Clock:
    """Controllable clock so every step has a distinct flush instant."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def tick(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)


def demonstrate_soft_delete() -> None:
    """Show cascading soft delete functionality."""
    print("🗑️  Cascading Soft Delete Example\n")

    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False)

    clock = Clock()
    listener = install_soft_delete(Session, base=Base, clock=clock)

    @listener.notifier.listens_for(SoftDeleteEvent.POST_SOFT_DELETE)
    def announce(target, transition):
        print(f"    event: {type(target).__name__} {target.id} -> {transition.new_value}")

    session = Session()

    # 1. Create test data
    print("1️⃣ Creating Test Data:")
    order = Order(number="SO-1001")
    order.items = [OrderItem(sku=sku) for sku in ("BOLT-10", "NUT-10", "WASHER-10")]
    session.add(order)
    session.commit()
    print(f"  ✓ Created order {order.number} with {len(order.items)} items\n")

    # 2. Soft delete a single item
    print("2️⃣ Soft Deleting a Single Item:")
    clock.tick(5)
    washer = order.items[2]
    session.delete(washer)
    session.commit()
    print(f"  ✓ {washer.sku} deleted at {washer.deleted_at}\n")

    # 3. Cascade soft delete
    print("3️⃣ Cascade Soft Delete:")
    clock.tick(5)
    session.delete(order)
    session.commit()

    report = last_flush_report(session)
    print(f"  ✓ Soft deleted {report.soft_deleted} records at {report.flush_instant}")
    for item in order.items:
        print(f"    - {item.sku}: deleted at {item.deleted_at}")
    print(f"  Active orders: {len(Order.query_active(session))}")
    print(f"  Orders retained: {len(Order.query_all(session))}\n")

    # 4. Restore the order
    print("4️⃣ Restoring the Order:")
    clock.tick(5)
    order.restore()
    session.commit()

    for item in order.items:
        state = "deleted" if item.is_deleted else "active"
        print(f"    - {item.sku}: {state}")
    print("  ✓ Items deleted before the order stay deleted\n")

    # 5. Hard delete of an expired record
    print("5️⃣ Deleting an Expired Record Again:")
    clock.tick(5)
    session.delete(washer)
    session.commit()

    report = last_flush_report(session)
    print(f"  ✓ Hard deleted records: {report.hard_deleted}")
    print(f"  Items remaining: {len(OrderItem.query_all(session))}")

    session.close()
    print("\n✅ Soft delete example completed!")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    demonstrate_soft_delete()
