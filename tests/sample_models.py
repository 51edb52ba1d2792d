"""Mapped classes shared by the soft delete tests and the CLI tests."""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base, relationship

from softcascade.soft_delete import HardDeletePolicy, SoftDeleteMixin, soft_deleteable

Base = declarative_base()


class ApprovedPurge(HardDeletePolicy):
    """Hard delete only entities flagged as approved."""

    def hard_delete_allowed(self, entity, config):
        return bool(entity.approved)


class ExplodingPolicy(HardDeletePolicy):
    """Policy that always fails."""

    def hard_delete_allowed(self, entity, config):
        raise RuntimeError("policy backend unavailable")


class Customer(Base):
    """Plain entity without soft delete."""

    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    name = Column(String(100))
    orders = relationship("Order", back_populates="customer")


class Order(Base, SoftDeleteMixin):
    """Order that cascades delete and undelete to its items."""

    __tablename__ = "orders"
    __soft_delete__ = {"hard_delete": False}
    __soft_delete_cascade__ = ["items"]

    id = Column(Integer, primary_key=True)
    number = Column(String(50))
    customer_id = Column(Integer, ForeignKey("customers.id"))
    customer = relationship("Customer", back_populates="orders")
    items = relationship("Item", back_populates="order", order_by="Item.id")


class Item(Base, SoftDeleteMixin):
    """Order line that cascades to its parts."""

    __tablename__ = "items"
    __soft_delete__ = {"hard_delete": False}
    __soft_delete_cascade__ = ["parts"]

    id = Column(Integer, primary_key=True)
    name = Column(String(100))
    order_id = Column(Integer, ForeignKey("orders.id"))
    order = relationship("Order", back_populates="items")
    parts = relationship("Part", back_populates="item", order_by="Part.id")


class Part(Base, SoftDeleteMixin):
    """Leaf of the order tree."""

    __tablename__ = "parts"
    __soft_delete__ = {"hard_delete": False}

    id = Column(Integer, primary_key=True)
    code = Column(String(50))
    item_id = Column(Integer, ForeignKey("items.id"))
    item = relationship("Item", back_populates="parts")


class Invoice(Base, SoftDeleteMixin):
    """Invoice whose lines follow deletes but not undeletes."""

    __tablename__ = "invoices"
    __soft_delete__ = {"hard_delete": False, "time_aware": True}
    __soft_delete_cascade__ = {"lines": {"undelete": False}}

    id = Column(Integer, primary_key=True)
    lines = relationship("InvoiceLine", order_by="InvoiceLine.id")


class InvoiceLine(Base, SoftDeleteMixin):
    __tablename__ = "invoice_lines"
    __soft_delete__ = {"hard_delete": False}

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"))


class Category(Base, SoftDeleteMixin):
    """Self-referential tree."""

    __tablename__ = "categories"
    __soft_delete__ = {"hard_delete": False}
    __soft_delete_cascade__ = ["children"]

    id = Column(Integer, primary_key=True)
    name = Column(String(100))
    parent_id = Column(Integer, ForeignKey("categories.id"))
    children = relationship("Category", order_by="Category.id")


class Node(Base, SoftDeleteMixin):
    """Entity whose peers may point at each other."""

    __tablename__ = "nodes"
    __soft_delete__ = {"hard_delete": False}
    __soft_delete_cascade__ = ["peer"]

    id = Column(Integer, primary_key=True)
    peer_id = Column(Integer, ForeignKey("nodes.id"))
    peer = relationship("Node", remote_side=[id], post_update=True)


class Draft(Base, SoftDeleteMixin):
    """Uses the default expiry-based hard delete policy."""

    __tablename__ = "drafts"

    id = Column(Integer, primary_key=True)
    title = Column(String(100))


class Attachment(Base, SoftDeleteMixin):
    """Decides hard deletion with one of its own methods."""

    __tablename__ = "attachments"
    __soft_delete__ = {"hard_delete": "can_purge"}

    id = Column(Integer, primary_key=True)
    purgeable = Column(Boolean, default=False)

    def can_purge(self):
        return bool(self.purgeable)


class Upload(Base, SoftDeleteMixin):
    """Decides hard deletion with a policy given by import path."""

    __tablename__ = "uploads"
    __soft_delete__ = {"hard_delete": "sample_models:ApprovedPurge"}

    id = Column(Integer, primary_key=True)
    approved = Column(Boolean, default=False)


class Export(Base, SoftDeleteMixin):
    __tablename__ = "exports"
    __soft_delete__ = {"hard_delete": ExplodingPolicy}

    id = Column(Integer, primary_key=True)


class Ticket(Base):
    """Soft deleteable without the mixin, stamped as a Unix timestamp."""

    __tablename__ = "tickets"
    __soft_delete__ = {"field_name": "removed_at", "hard_delete": False}

    id = Column(Integer, primary_key=True)
    removed_at = Column(Integer, nullable=True)


class Session_(Base):
    """Soft deleteable with a naive DateTime column."""

    __tablename__ = "user_sessions"
    __soft_delete__ = {"field_name": "closed_at", "hard_delete": False}

    id = Column(Integer, primary_key=True)
    closed_at = Column(DateTime, nullable=True)


@soft_deleteable(field_name="archived_at", hard_delete=False)
class Memo(Base):
    """Declared by decorator, stamped as a fractional Unix timestamp."""

    __tablename__ = "memos"

    id = Column(Integer, primary_key=True)
    archived_at = Column(Float, nullable=True)
