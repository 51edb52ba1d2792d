"""
softcascade - cascading soft deletes for SQLAlchemy.

Instead of physically removing rows, softcascade stamps a deletion timestamp
when an object is deleted and propagates the deletion along configured
relationships. Clearing the timestamp undeletes the object together with the
descendants that were deleted with it, while descendants deleted independently
and earlier stay deleted. Expired soft deletes turn into real deletes through
pluggable hard delete policies.

Key Features
------------
* **Cascade Engine**: One consistent decision pass per flush, with a single
  reference instant for every timestamp written
* **Undelete Windows**: Undeletes only reach descendants deleted together
  with their ancestor
* **Hard Delete Policies**: Expiry-based default, entity methods or custom
  policy classes
* **Lifecycle Events**: Pre/post soft delete and undelete listeners
* **Typed Timestamps**: DateTime, Date, integer and numeric deletion columns

Quick Start
-----------
>>> from sqlalchemy.orm import sessionmaker
>>> from softcascade import SoftDeleteMixin, install_soft_delete
>>>
>>> class Order(Base, SoftDeleteMixin):
...     __tablename__ = "orders"
...     __soft_delete_cascade__ = ["items"]
...     id = mapped_column(Integer, primary_key=True)
...     items = relationship("Item")
>>>
>>> SessionLocal = sessionmaker(bind=engine)
>>> install_soft_delete(SessionLocal, base=Base)
>>>
>>> session.delete(order)   # stamps order and its items
>>> session.commit()
>>> order.restore()         # clears them again
>>> session.commit()

License
-------
MIT License - See LICENSE file for details.
"""

__version__ = "1.0.0"

from .config import SoftCascadeConfig, configure, get_config, set_config
from .soft_delete import (
    CascadeEngine,
    ConfigurationError,
    HardDeleteExpired,
    HardDeletePolicy,
    LifecycleNotifier,
    SoftDeleteError,
    SoftDeleteEvent,
    SoftDeleteListener,
    SoftDeleteMixin,
    SoftDeleteRegistry,
    install_soft_delete,
    soft_deleteable,
)

__all__ = [
    # Soft Delete
    "SoftDeleteMixin",
    "soft_deleteable",
    "SoftDeleteRegistry",
    "SoftDeleteListener",
    "install_soft_delete",
    "CascadeEngine",
    # Policies
    "HardDeletePolicy",
    "HardDeleteExpired",
    # Events
    "LifecycleNotifier",
    "SoftDeleteEvent",
    # Errors
    "SoftDeleteError",
    "ConfigurationError",
    # Configuration
    "SoftCascadeConfig",
    "configure",
    "get_config",
    "set_config",
]
