"""
Tests for cascading soft deletes through the session listener.

Every test runs against an in-memory SQLite database with a frozen clock, so
the flush instant of each commit is known in advance.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sample_models import (
    Attachment,
    Base,
    Category,
    Customer,
    Draft,
    Export,
    Invoice,
    InvoiceLine,
    Item,
    Memo,
    Node,
    Order,
    Part,
    Session_,
    Ticket,
    Upload,
)
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from softcascade import SoftCascadeConfig
from softcascade.soft_delete import (
    CascadeCycleError,
    CascadeEngine,
    HardDeletePolicyError,
    SessionAdapter,
    SoftDeleteError,
    SoftDeleteEvent,
    SoftDeleteListener,
    SoftDeleteRegistry,
    TraversalError,
)
from softcascade.soft_delete.dates import DateAdapter
from softcascade.soft_delete.listener import last_flush_report

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds, microseconds=0):
    """Instant relative to T0."""
    return T0 + timedelta(seconds=seconds, microseconds=microseconds)


class FrozenClock:
    """Clock returning a settable instant."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def settings():
    return SoftCascadeConfig()


@pytest.fixture
def listener(settings, clock):
    return SoftDeleteListener(registry=SoftDeleteRegistry(settings), clock=clock)


@pytest.fixture
def db_session(listener):
    """Create an in-memory SQLite session with the soft delete listener."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine, expire_on_commit=False)
    session = Session()
    listener.install(session)

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def order(db_session):
    """Create an order with three items."""
    order = Order(number="SO-1001")
    order.items = [Item(name=f"item-{i}") for i in range(1, 4)]
    db_session.add(order)
    db_session.commit()
    return order


def delete_at(session, clock, instant, *objects):
    clock.now = instant
    for obj in objects:
        session.delete(obj)
    session.commit()


@pytest.mark.cascade
class TestCascadeDelete:
    """Test soft deleting objects and cascading to their children."""

    def test_marker_registered(self, pytestconfig):
        markers = pytestconfig.getini("markers")

        assert any(marker.startswith("cascade:") for marker in markers)

    def test_order_and_items_share_flush_instant(self, db_session, clock, order):
        """Test an order and its items are stamped with the same instant."""
        delete_at(db_session, clock, at(100), order)

        assert order.deleted_at == at(100)
        assert [item.deleted_at for item in order.items] == [at(100)] * 3
        assert len(Order.query_all(db_session)) == 1
        assert len(Item.query_all(db_session)) == 3
        assert Item.query_active(db_session) == []

    def test_deep_cascade_uses_one_instant(self, db_session, clock):
        """Test all levels of a cascade carry one timestamp value."""
        order = Order(number="SO-2")
        item = Item(name="frame", parts=[Part(code="P1"), Part(code="P2")])
        order.items = [item, Item(name="wheel")]
        db_session.add(order)
        db_session.commit()

        delete_at(db_session, clock, at(5, 250), order)

        stamps = {order.deleted_at, item.deleted_at}
        stamps.update(part.deleted_at for part in item.parts)
        stamps.update(i.deleted_at for i in order.items)
        assert stamps == {at(5, 250)}

    def test_independently_deleted_child_keeps_timestamp(
        self, db_session, clock, order
    ):
        """Test the cascade skips children already soft deleted."""
        earlier = order.items[2]
        delete_at(db_session, clock, at(50), earlier)

        delete_at(db_session, clock, at(100), order)

        assert earlier.deleted_at == at(50)
        assert order.items[0].deleted_at == at(100)

    def test_delete_root_and_child_in_same_flush(self, db_session, clock, order):
        """Test an object reached twice in one flush is decided once."""
        delete_at(db_session, clock, at(100), order, order.items[0])

        report = last_flush_report(db_session)
        assert report.soft_deleted == 4
        assert report.by_type["Item"]["soft_deleted"] == 3
        assert order.items[0].deleted_at == at(100)

    def test_self_referential_tree(self, db_session, clock):
        """Test a category tree is soft deleted top to bottom."""
        root = Category(name="root")
        child = Category(name="child")
        grandchild = Category(name="grandchild")
        child.children = [grandchild]
        root.children = [child]
        db_session.add(root)
        db_session.commit()

        delete_at(db_session, clock, at(10), root)

        assert root.deleted_at == child.deleted_at == grandchild.deleted_at == at(10)

    def test_cascade_delete_without_undelete(self, db_session, clock):
        """Test cascade options that only follow deletes."""
        invoice = Invoice(lines=[InvoiceLine(), InvoiceLine()])
        db_session.add(invoice)
        db_session.commit()

        delete_at(db_session, clock, at(10), invoice)
        assert [line.deleted_at for line in invoice.lines] == [at(10)] * 2

        clock.now = at(20)
        invoice.restore()
        db_session.commit()

        assert invoice.deleted_at is None
        assert [line.deleted_at for line in invoice.lines] == [at(10)] * 2

    def test_disabled_cascade_delete(self, clock):
        """Test the cascade can be switched off process wide."""
        settings = SoftCascadeConfig(cascade_delete_enabled=False)
        engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)
        session = sessionmaker(bind=engine, expire_on_commit=False)()
        SoftDeleteListener(settings=settings, clock=clock).install(session)

        order = Order(number="SO-3", items=[Item(name="a")])
        session.add(order)
        session.commit()
        session.delete(order)
        session.commit()

        assert order.deleted_at == T0
        assert order.items[0].deleted_at is None
        session.close()


@pytest.mark.cascade
class TestUndeleteWindow:
    """Test cascading undeletes limited to the deletion window."""

    def test_restore_clears_children_deleted_with_parent(
        self, db_session, clock, order
    ):
        """Test only children deleted with the parent are restored."""
        first, second, third = order.items
        delete_at(db_session, clock, at(50), third)
        delete_at(db_session, clock, at(100), order)

        clock.now = at(200)
        order.restore()
        db_session.commit()

        assert order.deleted_at is None
        assert first.deleted_at is None
        assert second.deleted_at is None
        assert third.deleted_at == at(50)

        report = last_flush_report(db_session)
        assert report.undeleted == 3
        assert report.cascade_cleared == 2

    def test_window_is_half_open(self, db_session, clock, order):
        """Test a child restamped at the flush instant stays deleted."""
        first, second, _ = order.items
        delete_at(db_session, clock, at(100), order)

        clock.now = at(200)
        db_session.delete(second)
        order.restore()
        db_session.commit()

        assert first.deleted_at is None
        assert second.deleted_at == at(200)

    def test_window_truncated_to_seconds(self, db_session, clock, order):
        """Test a window start without time awareness drops microseconds."""
        first, second, third = order.items
        delete_at(db_session, clock, at(100, 200_000), third)
        delete_at(db_session, clock, at(100, 700_000), order)

        clock.now = at(200)
        order.restore()
        db_session.commit()

        assert third.deleted_at is None
        assert first.deleted_at is None

    def test_undelete_cascades_through_levels(self, db_session, clock):
        """Test grandchildren deleted in the window are restored."""
        item = Item(name="frame", parts=[Part(code="P1")])
        order = Order(number="SO-4", items=[item])
        db_session.add(order)
        db_session.commit()
        delete_at(db_session, clock, at(30), order)

        clock.now = at(60)
        order.restore()
        db_session.commit()

        assert item.deleted_at is None
        assert item.parts[0].deleted_at is None

    def test_restoring_child_does_not_touch_parent(self, db_session, clock, order):
        """Test undelete cascades downwards only."""
        delete_at(db_session, clock, at(100), order)

        clock.now = at(200)
        order.items[0].restore()
        db_session.commit()

        assert order.items[0].deleted_at is None
        assert order.deleted_at == at(100)
        assert order.items[1].deleted_at == at(100)

    def test_round_trip(self, db_session, clock, order, listener):
        """Test delete then undelete returns to the pre-delete value."""
        transitions = []
        listener.notifier.listen(
            SoftDeleteEvent.PRE_SOFT_UNDELETE,
            lambda target, transition: transitions.append(transition),
        )
        delete_at(db_session, clock, at(100), order)

        clock.now = at(200)
        order.restore()
        db_session.commit()

        assert order.is_deleted is False
        assert all(item.deleted_at is None for item in order.items)
        assert transitions[0].old_value == at(100)
        assert transitions[0].is_undelete

    def test_upward_undelete_reaching_origin(self, clock):
        """Test a parent cascading back to the restored child leaves it alone."""
        from cyclic_models import Author, Book
        from cyclic_models import Base as CyclicBase

        engine = create_engine("sqlite:///:memory:")
        CyclicBase.metadata.create_all(engine)
        session = sessionmaker(bind=engine, expire_on_commit=False)()
        SoftDeleteListener(settings=SoftCascadeConfig(), clock=clock).install(session)

        first, second = Book(), Book()
        author = Author(name="Le Guin", books=[first, second])
        session.add(author)
        session.commit()
        for obj in (author, first, second):
            obj.deleted_at = at(100)
        session.commit()

        clock.now = at(200)
        first.restore()
        session.commit()

        assert author.deleted_at is None
        assert second.deleted_at is None
        report = last_flush_report(session)
        assert report.undeleted == 3
        assert report.cascade_cleared == 2
        session.close()


class TestHardDelete:
    """Test hard delete decisions."""

    def test_default_policy_soft_deletes_live_entity(self, db_session, clock):
        """Test a live entity is soft deleted first."""
        draft = Draft(title="notes")
        db_session.add(draft)
        db_session.commit()

        delete_at(db_session, clock, at(10), draft)

        assert draft.deleted_at == at(10)
        assert db_session.get(Draft, draft.id) is draft

    def test_default_policy_hard_deletes_expired_entity(self, db_session, clock):
        """Test deleting an already soft deleted entity removes the row."""
        draft = Draft(title="notes")
        db_session.add(draft)
        db_session.commit()
        draft_id = draft.id
        delete_at(db_session, clock, at(10), draft)

        delete_at(db_session, clock, at(20), draft)

        assert Draft.query_all(db_session) == []
        assert last_flush_report(db_session).hard_deleted == 1
        db_session.expunge_all()
        assert db_session.get(Draft, draft_id) is None

    def test_default_policy_restamps_future_deletion(self, db_session, clock):
        """Test a deletion scheduled in the future is moved to now."""
        draft = Draft(title="notes", deleted_at=at(3600))
        db_session.add(draft)
        db_session.commit()

        delete_at(db_session, clock, at(10), draft)

        assert draft.deleted_at == at(10)
        assert len(Draft.query_all(db_session)) == 1

    def test_method_decider(self, db_session, clock):
        """Test hard delete decided by an entity method."""
        keep = Attachment(purgeable=False)
        purge = Attachment(purgeable=True)
        db_session.add_all([keep, purge])
        db_session.commit()

        delete_at(db_session, clock, at(10), keep, purge)

        remaining = Attachment.query_all(db_session)
        assert remaining == [keep]
        assert keep.deleted_at == at(10)

    def test_policy_from_import_path(self, db_session, clock):
        """Test hard delete decided by a policy class given as a path."""
        approved = Upload(approved=True)
        pending = Upload(approved=False)
        db_session.add_all([approved, pending])
        db_session.commit()

        delete_at(db_session, clock, at(10), approved, pending)

        assert Upload.query_all(db_session) == [pending]

    def test_policy_failure_aborts_flush(self, db_session, clock):
        """Test a failing policy leaves the session untouched."""
        export = Export()
        db_session.add(export)
        db_session.commit()

        clock.now = at(10)
        db_session.delete(export)
        with pytest.raises(HardDeletePolicyError, match="policy backend unavailable"):
            db_session.flush()

        assert export.deleted_at is None
        db_session.rollback()

    def test_non_soft_deleteable_entity_is_removed(self, db_session, clock):
        """Test entities without a declaration are deleted normally."""
        customer = Customer(name="ACME")
        db_session.add(customer)
        db_session.commit()

        delete_at(db_session, clock, at(10), customer)

        assert db_session.query(Customer).count() == 0
        assert last_flush_report(db_session).total == 0


class TestTimestampTypes:
    """Test the stamped value follows the column type."""

    def test_integer_field(self, db_session, clock):
        """Test integer deletion fields receive a Unix timestamp."""
        ticket = Ticket()
        db_session.add(ticket)
        db_session.commit()

        delete_at(db_session, clock, at(0, 900_000), ticket)

        assert ticket.removed_at == int(T0.timestamp())

    def test_naive_datetime_field(self, db_session, clock):
        """Test naive datetime fields receive local time without tzinfo."""
        user_session = Session_()
        db_session.add(user_session)
        db_session.commit()

        delete_at(db_session, clock, at(1), user_session)

        assert user_session.closed_at == datetime(2024, 1, 1, 12, 0, 1)
        assert user_session.closed_at.tzinfo is None

    def test_naive_datetime_in_configured_zone(self, clock):
        """Test naive timestamps follow the configured timezone."""
        settings = SoftCascadeConfig(timezone="Europe/Berlin")
        engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)
        session = sessionmaker(bind=engine, expire_on_commit=False)()
        SoftDeleteListener(settings=settings, clock=clock).install(session)

        user_session = Session_()
        session.add(user_session)
        session.commit()
        session.delete(user_session)
        session.commit()

        assert user_session.closed_at == datetime(2024, 1, 1, 13, 0, 0)
        session.close()

    def test_float_field(self, db_session, clock):
        """Test float deletion fields receive a fractional Unix timestamp."""
        memo = Memo()
        db_session.add(memo)
        db_session.commit()

        delete_at(db_session, clock, at(0, 250_000), memo)

        assert isinstance(memo.archived_at, float)
        assert memo.archived_at == pytest.approx(T0.timestamp() + 0.25)
        assert last_flush_report(db_session).soft_deleted == 1


class TestExpiredAttributes:
    """Test undeletes on sessions that expire objects on commit."""

    @pytest.fixture
    def expiring_session(self, listener):
        engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)
        session = sessionmaker(bind=engine)()
        listener.install(session)

        yield session

        session.close()
        engine.dispose()

    @pytest.fixture
    def undeletes(self, listener):
        transitions = []
        listener.notifier.listen(
            SoftDeleteEvent.POST_SOFT_UNDELETE,
            lambda target, transition: transitions.append(transition),
        )
        return transitions

    def test_custom_field_undelete(self, expiring_session, clock, undeletes):
        """Test clearing an expired custom deletion field is an undelete."""
        ticket = Ticket()
        expiring_session.add(ticket)
        expiring_session.commit()
        delete_at(expiring_session, clock, at(10), ticket)

        clock.now = at(20)
        ticket.removed_at = None
        expiring_session.commit()

        assert ticket.removed_at is None
        assert [t.old_value for t in undeletes] == [int(at(10).timestamp())]
        assert last_flush_report(expiring_session).undeleted == 1

    def test_decorated_class_undelete(self, expiring_session, clock, undeletes):
        memo = Memo()
        expiring_session.add(memo)
        expiring_session.commit()
        delete_at(expiring_session, clock, at(10), memo)

        clock.now = at(20)
        memo.archived_at = None
        expiring_session.commit()

        assert len(undeletes) == 1
        assert undeletes[0].old_value == pytest.approx(at(10).timestamp())

    def test_mixin_cascade_undelete(self, expiring_session, clock, undeletes):
        order = Order(number="SO-9", items=[Item(name="item-1")])
        expiring_session.add(order)
        expiring_session.commit()
        delete_at(expiring_session, clock, at(10), order)

        clock.now = at(20)
        order.restore()
        expiring_session.commit()

        assert order.items[0].deleted_at is None
        assert len(undeletes) == 2


class TestFailures:
    """Test aborted traversals leave nothing behind."""

    def test_object_cycle_aborts_flush(self, db_session, clock):
        """Test peers cascading to each other raise a cycle error."""
        first, second = Node(), Node()
        db_session.add_all([first, second])
        db_session.commit()
        first.peer = second
        second.peer = first
        db_session.commit()

        db_session.delete(first)
        with pytest.raises(CascadeCycleError) as exc_info:
            db_session.flush()

        assert "Node" in str(exc_info.value)
        assert exc_info.value.path[0] is first
        assert first.deleted_at is None
        assert second.deleted_at is None
        assert first in db_session.deleted
        db_session.rollback()

    def test_depth_limit(self, clock):
        """Test cascades deeper than the limit abort the flush."""
        settings = SoftCascadeConfig(max_cascade_depth=2)
        engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)
        session = sessionmaker(bind=engine, expire_on_commit=False)()
        SoftDeleteListener(settings=settings, clock=clock).install(session)

        root = Category(name="root")
        child = Category(name="child", children=[Category(name="leaf")])
        root.children = [child]
        session.add(root)
        session.commit()

        session.delete(root)
        with pytest.raises(TraversalError, match="deeper than 2"):
            session.flush()

        assert child.deleted_at is None
        session.rollback()
        session.close()

    def test_listener_failure_propagates(self, db_session, clock, order, listener):
        """Test exceptions raised by lifecycle listeners abort the flush."""

        @listener.notifier.listens_for(SoftDeleteEvent.PRE_SOFT_DELETE)
        def refuse(target, transition):
            raise ValueError("archive unavailable")

        db_session.delete(order)
        with pytest.raises(ValueError, match="archive unavailable"):
            db_session.flush()
        db_session.rollback()

    def test_bidirectional_cascade_aborts_flush(self, clock):
        """Test types cascading to each other abort when both are reached."""
        from cyclic_models import Author, Book
        from cyclic_models import Base as CyclicBase

        engine = create_engine("sqlite:///:memory:")
        CyclicBase.metadata.create_all(engine)
        session = sessionmaker(bind=engine, expire_on_commit=False)()
        SoftDeleteListener(settings=SoftCascadeConfig(), clock=clock).install(session)

        author = Author(name="Le Guin", books=[Book()])
        session.add(author)
        session.commit()

        session.delete(author)
        with pytest.raises(CascadeCycleError, match="Author.*Book.*Author"):
            session.flush()

        session.rollback()
        session.close()


class TestLifecycleEvents:
    """Test events emitted around soft deletes and undeletes."""

    def test_delete_events_children_first(self, db_session, clock, order, listener):
        """Test pre and post delete events are emitted per object."""
        seen = []

        def record(event):
            def handler(target, transition):
                seen.append((event, type(target).__name__, transition))

            return handler

        for event in (SoftDeleteEvent.PRE_SOFT_DELETE, SoftDeleteEvent.POST_SOFT_DELETE):
            listener.notifier.listen(event, record(event))

        delete_at(db_session, clock, at(100), order)

        names = [(event.value, name) for event, name, _ in seen]
        assert names[:2] == [("pre_soft_delete", "Item"), ("post_soft_delete", "Item")]
        assert names[-2:] == [
            ("pre_soft_delete", "Order"),
            ("post_soft_delete", "Order"),
        ]
        assert len(names) == 8
        assert all(t.old_value is None and t.new_value == at(100) for _, _, t in seen)

    def test_undelete_events_wrap_children(self, db_session, clock, order, listener):
        """Test the root undelete events enclose those of its children."""
        seen = []
        for event in (
            SoftDeleteEvent.PRE_SOFT_UNDELETE,
            SoftDeleteEvent.POST_SOFT_UNDELETE,
        ):
            listener.notifier.listen(
                event,
                lambda target, transition, event=event: seen.append(
                    (event.value, type(target).__name__)
                ),
            )
        delete_at(db_session, clock, at(100), order)

        clock.now = at(200)
        order.restore()
        db_session.commit()

        assert seen[0] == ("pre_soft_undelete", "Order")
        assert seen[-1] == ("post_soft_undelete", "Order")
        assert seen.count(("pre_soft_undelete", "Item")) == 3

    def test_events_can_be_disabled(self, clock):
        """Test no events are dispatched when disabled in settings."""
        settings = SoftCascadeConfig(emit_lifecycle_events=False)
        listener = SoftDeleteListener(settings=settings, clock=clock)
        seen = []
        listener.notifier.listen(
            SoftDeleteEvent.POST_SOFT_DELETE, lambda target, t: seen.append(target)
        )

        engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)
        session = sessionmaker(bind=engine, expire_on_commit=False)()
        listener.install(session)

        draft = Draft(title="x")
        session.add(draft)
        session.commit()
        session.delete(draft)
        session.commit()

        assert draft.deleted_at == T0
        assert seen == []
        session.close()


class TestListener:
    """Test installing and disabling the listener."""

    def test_disabled_listener_hard_deletes(self, clock):
        """Test the engine does nothing when disabled."""
        settings = SoftCascadeConfig(enabled=False)
        engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)
        session = sessionmaker(bind=engine, expire_on_commit=False)()
        SoftDeleteListener(settings=settings, clock=clock).install(session)

        order = Order(number="SO-5")
        session.add(order)
        session.commit()
        session.delete(order)
        session.commit()

        assert session.query(Order).count() == 0
        session.close()

    def test_install_is_idempotent(self, listener):
        """Test installing twice registers one hook."""
        Session = sessionmaker()
        listener.install(Session)
        listener.install(Session)

        listener.uninstall(Session)

        assert not event.contains(Session, "before_flush", listener.before_flush)

    def test_flush_report_stored_on_session(self, db_session, clock, order, settings):
        """Test the report of the last flush is kept in session.info."""
        delete_at(db_session, clock, at(100), order)

        report = db_session.info[settings.report_session_key]
        assert report.flush_instant == at(100)
        assert report.soft_deleted == 4
        assert report.by_type == {
            "Item": {"soft_deleted": 3},
            "Order": {"soft_deleted": 1},
        }


class TestCascadeEngine:
    """Test the engine directly against a session adapter."""

    @pytest.fixture
    def engine(self, db_session, settings):
        adapter = SessionAdapter(db_session, DateAdapter(clock=lambda: at(100)))
        return CascadeEngine(SoftDeleteRegistry(settings), adapter)

    def test_soft_delete_is_idempotent(self, engine, order):
        """Test visiting the same object twice plans one write."""
        engine.begin()
        item = order.items[0]

        engine.soft_delete(item, cascade_level=1)
        engine.soft_delete(item, cascade_level=1)

        assert engine.report.soft_deleted == 1
        assert engine.plan.planned_value(item, "deleted_at") == at(100)
        assert item.deleted_at is None

    def test_plan_applied_only_on_apply(self, engine, order):
        """Test planned decisions reach objects only when applied."""
        engine.begin()
        engine.soft_delete(order)
        assert order.deleted_at is None

        engine.apply()

        assert order.deleted_at == at(100)
        assert all(item.deleted_at == at(100) for item in order.items)

    def test_requires_begin(self, engine, order):
        """Test decisions outside a flush are rejected."""
        with pytest.raises(SoftDeleteError, match="begin"):
            engine.soft_delete(order)

    def test_unconfigured_object_is_ignored(self, engine, db_session):
        """Test objects without configuration produce no plan."""
        customer = Customer(name="ACME")
        db_session.add(customer)
        db_session.commit()

        engine.begin()
        engine.soft_delete(customer)

        assert len(engine.plan) == 0

    def test_adapter_moves_objects_between_delete_and_keep(self, db_session, order):
        """Test the adapter's scheduling reflects the session deletion list."""
        adapter = SessionAdapter(db_session)
        item = order.items[0]

        adapter.schedule_removal(item)
        assert adapter.scheduled_deletions() == [item]

        adapter.convert_delete_to_update(item)
        assert adapter.scheduled_deletions() == []
