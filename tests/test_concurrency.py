import threading
from datetime import timedelta

import pytest

from supplymesh.audit import AuditTrail
from supplymesh.container import build_container
from supplymesh.distribution import CatalogEligibilityResolver, VisibilityFanout
from supplymesh.domain import (
    DelayReport,
    DeliveryState,
    DeliveryStatusUpdate,
    OrderCreate,
    OrderItem,
    OrderState,
    VisibilityStatus,
)
from supplymesh.errors import ConflictError
from supplymesh.id_provider import UUIDProvider
from supplymesh.notifications import InboxNotificationSender, LoggingEmailSender
from supplymesh.persistence.repositories import (
    SqlAlchemyDirectory,
    SqlAlchemyEventLog,
    SqlAlchemyNotificationRepository,
    SqlAlchemyOrderRepository,
    SqlAlchemySkuCatalog,
    SqlAlchemySupplierStockRepository,
)
from supplymesh.repositories import InMemoryEventBus
from supplymesh.services import OrderService
from supplymesh.settings import Settings

GAUTENG = "sup-gauteng-hardware"
JOBURG = "sup-joburg-fasteners"


def order_payload(clock):
    return OrderCreate(
        vendor_id="ven-oak-street",
        items=[OrderItem(sku="M8-BOLT-20", quantity=10)],
        delivery_location="Pretoria",
        delivery_address="12 Oak St",
        required_delivery_date=clock.now() + timedelta(days=3),
    )


def run_together(*calls):
    """Start every call at the same barrier and collect each result or raised error."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(index, call):
        barrier.wait()
        try:
            outcomes[index] = call()
        except Exception as exc:
            outcomes[index] = exc

    threads = [threading.Thread(target=worker, args=(index, call)) for index, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return outcomes


def accepted_rows(service, order_id):
    return [row for row in service.visibility(order_id) if row.status == VisibilityStatus.ACCEPTED]


class TestInMemoryRaces:
    def test_concurrent_acceptors_have_one_winner(self, container, clock):
        service = container.order_service
        for _ in range(25):
            order = service.place(order_payload(clock))

            outcomes = run_together(
                lambda: service.accept(order.id, GAUTENG),
                lambda: service.accept(order.id, JOBURG),
            )

            conflicts = [outcome for outcome in outcomes if isinstance(outcome, ConflictError)]
            assert len(conflicts) == 1
            assert len(accepted_rows(service, order.id)) == 1
            assert service.get_order(order.id).order_state == OrderState.ACCEPTED

    def test_delay_report_never_undoes_acceptance(self, container, clock):
        service = container.order_service
        eta = clock.now() + timedelta(days=5)
        for _ in range(25):
            order = service.place(order_payload(clock))

            run_together(
                lambda: service.accept(order.id, GAUTENG),
                lambda: service.report_delay(order.id, DelayReport(revised_eta=eta, reason="Flooding")),
                lambda: service.accept(order.id, JOBURG),
            )

            final = service.get_order(order.id)
            assert final.order_state == OrderState.ACCEPTED
            assert final.delivery_state == DeliveryState.AT_RISK
            assert final.predicted_delivery_at == eta
            assert len(accepted_rows(service, order.id)) == 1


class InterleavedOrders(SqlAlchemyOrderRepository):
    """Runs `interleave` once, after a transition has read the order and before it writes."""

    interleave = None

    def transition(self, order_id, change):
        def interleaved(order):
            hook, self.interleave = self.interleave, None
            if hook:
                hook()
            return change(order)

        return super().transition(order_id, interleaved)


@pytest.fixture
def sql_container(tmp_path, clock):
    return build_container(Settings(database_url=f"sqlite:///{tmp_path / 'races.db'}"), clock=clock)


@pytest.fixture
def interleaved(sql_container, clock):
    """A second order service over the same database whose transitions can be interrupted."""
    db = sql_container.db
    ids = UUIDProvider()
    orders = InterleavedOrders(db)
    service = OrderService(
        orders,
        SqlAlchemySkuCatalog(db),
        CatalogEligibilityResolver(SqlAlchemyDirectory(db), SqlAlchemySupplierStockRepository(db)),
        VisibilityFanout(orders),
        AuditTrail(SqlAlchemyEventLog(db), InMemoryEventBus(), clock, ids),
        InboxNotificationSender(SqlAlchemyNotificationRepository(db), clock, ids),
        LoggingEmailSender("ops@supplymesh.local"),
        clock,
        ids,
    )
    return service, orders


class TestSqlInterleaving:
    def test_acceptance_between_read_and_write_survives_delay_report(self, sql_container, interleaved, clock):
        service, orders = interleaved
        other = sql_container.order_service
        order = service.place(order_payload(clock))
        orders.interleave = lambda: other.accept(order.id, GAUTENG)

        with pytest.raises(ConflictError):
            service.report_delay(
                order.id, DelayReport(revised_eta=clock.now() + timedelta(days=4), reason="Strike")
            )
        with pytest.raises(ConflictError):
            other.accept(order.id, JOBURG)

        assert other.get_order(order.id).order_state == OrderState.ACCEPTED
        assert [row.supplier_id for row in accepted_rows(other, order.id)] == [GAUTENG]

    def test_acceptance_between_read_and_write_survives_cancel_attempt(self, sql_container, interleaved, clock):
        service, orders = interleaved
        other = sql_container.order_service
        order = service.place(order_payload(clock))
        orders.interleave = lambda: other.accept(order.id, GAUTENG)

        with pytest.raises(ConflictError):
            service.cancel(order.id)

        assert other.get_order(order.id).order_state == OrderState.ACCEPTED
        assert "order_cancelled" not in [event.type for event in other.timeline(order.id)]

    def test_delivery_between_read_and_write_is_kept(self, sql_container, interleaved, clock):
        service, orders = interleaved
        other = sql_container.order_service
        order = service.place(order_payload(clock))
        other.accept(order.id, GAUTENG)
        orders.interleave = lambda: other.advance_delivery(order.id, DeliveryStatusUpdate(status="DELIVERED"))

        with pytest.raises(ConflictError):
            service.report_delay(
                order.id, DelayReport(revised_eta=clock.now() + timedelta(days=4), reason="Strike")
            )

        final = other.get_order(order.id)
        assert final.delivery_state == DeliveryState.DELIVERED
        assert final.actual_delivered_at == clock.now()
        assert final.predicted_delivery_at is None
