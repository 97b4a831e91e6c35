"""Component tests for group ordering over the in-memory gateway.

Every participant runs a real consensus engine; the in-memory gateway
delivers change notifications in FIFO order, so interleavings between
engines are reproducible.
"""

import asyncio
from collections.abc import Mapping
from typing import Any
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from table_order_service.errors import StorageError
from table_order_service.handlers.api_handler import create_app
from table_order_service.models.cart_models import CartItem
from table_order_service.models.menu_models import MenuItem
from table_order_service.models.session_models import EntryParameters
from table_order_service.repositories.confirmation_repository import (
    ConfirmationRepository,
    SubmissionClaimRepository,
)
from table_order_service.repositories.order_repositories import (
    FeedbackRepository,
    MenuRepository,
    OrderRepository,
)
from table_order_service.services.ai_client import AIClient
from table_order_service.services.consensus import ConsensusState
from table_order_service.services.feedback_service import FeedbackService
from table_order_service.services.menu_service import MenuService
from table_order_service.services.order_service import OrderService
from table_order_service.services.session_service import SessionRegistry
from table_order_service.services.session_store import SessionStore
from table_order_service.storage.gateway import (
    MENU_ITEMS_TABLE,
    ORDERS_TABLE,
    SUBMISSION_CLAIMS_TABLE,
)
from table_order_service.storage.memory_gateway import InMemoryGateway


def make_registry(gateway: InMemoryGateway, claims: bool = True) -> SessionRegistry:
    return SessionRegistry(
        confirmations=ConfirmationRepository(gateway),
        order_service=OrderService(order_repository=OrderRepository(gateway)),
        store=SessionStore(),
        claims=SubmissionClaimRepository(gateway) if claims else None,
    )


async def orders_placed(gateway: InMemoryGateway) -> list[dict]:
    return await gateway.select(ORDERS_TABLE, {})


class FlakyGateway(InMemoryGateway):
    """In-memory gateway whose writes to selected tables fail."""

    def __init__(self) -> None:
        super().__init__()
        self.failing: set[str] = set()

    async def upsert(
        self, table: str, key: Mapping[str, Any], record: Mapping[str, Any]
    ) -> dict[str, Any]:
        if table in self.failing:
            raise StorageError(f"{table} unavailable")
        return await super().upsert(table, key, record)


@pytest.mark.component
class TestSingleParticipant:
    """A table with one diner."""

    @pytest.mark.asyncio
    async def test_ready_places_order_and_clears_table(
        self, gateway: InMemoryGateway, menu: list[MenuItem]
    ) -> None:
        """Test that one diner confirming places the order and resets the table."""
        registry = make_registry(gateway)
        engine = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")

        await engine.add_item("item_1", menu)
        await engine.add_item("item_3", menu)
        await registry.settle()
        assert engine.state is ConsensusState.WAITING
        assert engine.snapshot.status_label == "0 of 1 people are ready."

        await engine.mark_ready()
        await registry.settle()

        assert engine.state is ConsensusState.CLOSED
        order_id = engine.snapshot.order_id
        assert order_id is not None
        assert engine.session.order_id == order_id
        assert len(engine.session.cart) == 0
        assert await registry.confirmations.list_for_table("t1") == []

        order_items = await registry.order_service.get_order_status(order_id)
        assert sorted(item.menu_item_id for item in order_items) == ["item_1", "item_3"]

    @pytest.mark.asyncio
    async def test_adding_after_close_starts_a_new_round(
        self, gateway: InMemoryGateway, menu: list[MenuItem]
    ) -> None:
        """Test that a closed table re-opens when someone adds an item."""
        registry = make_registry(gateway)
        engine = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")
        await engine.add_item("item_1", menu)
        await engine.mark_ready()
        await registry.settle()
        first_order = engine.snapshot.order_id

        await engine.add_item("item_2", menu)
        await registry.settle()

        assert engine.state is ConsensusState.WAITING
        assert engine.snapshot.order_id is None
        assert engine.session.order_id == first_order

        await engine.mark_ready()
        await registry.settle()

        assert engine.state is ConsensusState.CLOSED
        assert engine.snapshot.order_id not in (None, first_order)
        assert len(await orders_placed(gateway)) == 2

    @pytest.mark.asyncio
    async def test_joining_an_all_ready_table_does_not_submit(
        self, gateway: InMemoryGateway, menu: list[MenuItem]
    ) -> None:
        """Test that the initial load only evaluates and never places an order."""
        registry = make_registry(gateway)
        await registry.confirmations.publish(
            "t1", "carol", [CartItem.from_menu_item(menu[1])], confirmed=True
        )

        engine = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")
        await registry.settle()

        assert engine.state is ConsensusState.READY
        assert engine.snapshot.status_label == "All 1 people are ready!"
        assert await orders_placed(gateway) == []


@pytest.mark.component
class TestTwoParticipants:
    """A table with two diners on separate engines."""

    @pytest.mark.asyncio
    async def test_waiting_labels(self, gateway: InMemoryGateway, menu: list[MenuItem]) -> None:
        """Test that both diners see the same readiness count."""
        registry = make_registry(gateway)
        alice = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")
        bob = await registry.enter(EntryParameters(table_id="t1"), user_id="bob")

        await alice.add_item("item_1", menu)
        await alice.mark_ready()
        await bob.add_item("item_2", menu)
        await registry.settle()

        for engine in (alice, bob):
            assert engine.state is ConsensusState.WAITING
            assert engine.snapshot.status_label == "1 of 2 people are ready."
            assert engine.snapshot.ready_button_label == "Waiting for others..."
            assert len(engine.snapshot.group_items) == 2

    @pytest.mark.asyncio
    async def test_participant_without_items_is_not_counted(
        self, gateway: InMemoryGateway, menu: list[MenuItem]
    ) -> None:
        """Test that a diner with an empty cart does not block the order."""
        registry = make_registry(gateway)
        alice = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")
        bob = await registry.enter(EntryParameters(table_id="t1"), user_id="bob")

        await bob.mark_ready()
        await alice.add_item("item_1", menu)
        await alice.mark_ready()
        await registry.settle()

        assert alice.state is ConsensusState.CLOSED
        assert len(await orders_placed(gateway)) == 1

    @pytest.mark.asyncio
    async def test_adding_an_item_withdraws_confirmation(
        self, gateway: InMemoryGateway, menu: list[MenuItem]
    ) -> None:
        """Test that changing a cart re-opens consensus for that diner."""
        registry = make_registry(gateway)
        alice = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")
        bob = await registry.enter(EntryParameters(table_id="t1"), user_id="bob")

        await alice.add_item("item_1", menu)
        await bob.add_item("item_2", menu)
        await alice.mark_ready()
        await registry.settle()
        assert bob.snapshot.confirmed_count == 1

        await alice.add_item("item_3", menu)
        await registry.settle()

        assert bob.snapshot.confirmed_count == 0
        assert bob.snapshot.status_label == "0 of 2 people are ready."

    @pytest.mark.asyncio
    async def test_claims_place_exactly_one_order(
        self, gateway: InMemoryGateway, menu: list[MenuItem]
    ) -> None:
        """Test that only one engine submits when both observe readiness."""
        registry = make_registry(gateway, claims=True)
        alice = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")
        bob = await registry.enter(EntryParameters(table_id="t1"), user_id="bob")

        await alice.add_item("item_1", menu)
        await bob.add_item("item_2", menu)
        await registry.settle()
        await alice.mark_ready()
        await bob.mark_ready()
        await registry.settle()

        orders = await orders_placed(gateway)
        assert len(orders) == 1
        assert {alice.state, bob.state} == {ConsensusState.CLOSED}

        winners = [engine for engine in (alice, bob) if engine.snapshot.order_id]
        losers = [engine for engine in (alice, bob) if engine.snapshot.claimed_elsewhere]
        assert len(winners) == 1
        assert len(losers) == 1
        assert winners[0].snapshot.order_id == orders[0]["id"]
        assert len(alice.session.cart) == 0
        assert len(bob.session.cart) == 0

        order_items = await registry.order_service.get_order_status(orders[0]["id"])
        assert len(order_items) == 2

    @pytest.mark.asyncio
    async def test_without_claims_both_engines_submit(
        self, gateway: InMemoryGateway, menu: list[MenuItem]
    ) -> None:
        """Test the duplicate order race that submission claims exist to prevent."""
        registry = make_registry(gateway, claims=False)
        alice = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")
        bob = await registry.enter(EntryParameters(table_id="t1"), user_id="bob")

        await alice.add_item("item_1", menu)
        await bob.add_item("item_2", menu)
        await registry.settle()
        await alice.mark_ready()
        await bob.mark_ready()
        await registry.settle()

        assert len(await orders_placed(gateway)) == 2
        assert alice.state is ConsensusState.CLOSED
        assert bob.state is ConsensusState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_order_can_be_placed_after_confirming_again(
        self, menu: list[MenuItem]
    ) -> None:
        """Test that an order write failure does not lock the table out of the same carts."""
        gateway = FlakyGateway()
        registry = make_registry(gateway, claims=True)
        alice = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")
        bob = await registry.enter(EntryParameters(table_id="t1"), user_id="bob")
        await alice.add_item("item_1", menu)
        await bob.add_item("item_2", menu)
        await registry.settle()

        gateway.failing.add(ORDERS_TABLE)
        await alice.mark_ready()
        await bob.mark_ready()
        await registry.settle()

        assert await orders_placed(gateway) == []
        assert await gateway.select(SUBMISSION_CLAIMS_TABLE, {}) == []
        assert any(engine.last_error for engine in (alice, bob))
        assert all(engine.snapshot.order_id is None for engine in (alice, bob))
        assert len(await registry.confirmations.list_for_table("t1")) == 2

        gateway.failing.clear()
        await alice.mark_ready()
        await registry.settle()

        orders = await orders_placed(gateway)
        assert len(orders) == 1
        assert {alice.state, bob.state} == {ConsensusState.CLOSED}
        assert len(alice.session.cart) == 0
        assert len(bob.session.cart) == 0
        assert await registry.confirmations.list_for_table("t1") == []

        order_items = await registry.order_service.get_order_status(orders[0]["id"])
        assert sorted(item.menu_item_id for item in order_items) == ["item_1", "item_2"]


@pytest.mark.component
class TestReentry:
    """Re-entering the flow after a reload."""

    @pytest.mark.asyncio
    async def test_reentry_keeps_one_subscription_and_the_cart(
        self, gateway: InMemoryGateway, menu: list[MenuItem]
    ) -> None:
        """Test that re-entering replaces the engine without duplicate callbacks."""
        registry = make_registry(gateway)
        first = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")
        await first.add_item("item_1", menu)
        await registry.settle()

        second = await registry.enter(EntryParameters(table_id="t1"), user_id="alice")

        assert second is not first
        assert not first.subscribed
        assert second.subscribed
        assert gateway.change_feed.subscription_count == 1
        assert registry.active_count == 1
        assert [item.id for item in second.session.cart.items] == ["item_1"]
        assert second.state is ConsensusState.WAITING


@pytest.mark.component
class TestHTTPFlow:
    """The diner and staff endpoints wired to real services."""

    @pytest.fixture
    def client(self, gateway: InMemoryGateway, mock_menu_items: list[dict]) -> TestClient:
        async def seed() -> None:
            for row in mock_menu_items:
                await gateway.upsert(MENU_ITEMS_TABLE, {"id": row["id"]}, row)

        asyncio.run(seed())

        ai_client = MagicMock(spec=AIClient)
        order_service = OrderService(order_repository=OrderRepository(gateway))
        app = create_app(
            registry=make_registry(gateway),
            menu_service=MenuService(menu_repository=MenuRepository(gateway), ai_client=ai_client),
            order_service=order_service,
            feedback_service=FeedbackService(feedback_repository=FeedbackRepository(gateway)),
            ai_client=ai_client,
            api_keys=["kitchen-key"],
        )
        return TestClient(app)

    def test_table_orders_together(self, client: TestClient) -> None:
        """Test two diners ordering, then the kitchen updating an item."""
        with client:
            for user_id in ("alice", "bob"):
                response = client.post("/sessions", json={"table_id": "t1", "user_id": user_id})
                assert response.status_code == 200

            client.post("/tables/t1/participants/alice/cart", json={"menu_item_id": "item_1"})
            client.post("/tables/t1/participants/bob/cart", json={"menu_item_id": "item_2"})

            waiting = client.post("/tables/t1/participants/alice/ready").json()
            assert waiting["state"] == "waiting"
            assert waiting["status_label"] == "1 of 2 people are ready."

            closed = client.post("/tables/t1/participants/bob/ready").json()
            assert closed["state"] == "closed"

            views = [
                client.get(f"/tables/t1/participants/{user_id}/consensus").json()
                for user_id in ("alice", "bob")
            ]
            order_ids = [view["order_id"] for view in views if view["order_id"]]
            assert len(order_ids) == 1

            status = client.get(f"/orders/{order_ids[0]}/status").json()
            assert len(status["items"]) == 2
            assert {item["status"] for item in status["items"]} == {"pending"}

            item_id = status["items"][0]["id"]
            with client.websocket_connect(f"/ws/orders/{order_ids[0]}") as ws:
                assert ws.receive_json()["type"] == "order_status"

                updated = client.patch(
                    f"/admin/orders/{order_ids[0]}/items/{item_id}",
                    json={"status": "cooking"},
                    headers={"X-API-Key": "kitchen-key"},
                )
                assert updated.status_code == 200
                assert updated.json()["progress_percentage"] == 40.0

                pushed = ws.receive_json()
                assert {item["id"]: item["status"] for item in pushed["items"]}[item_id] == "cooking"

            cart = client.get("/tables/t1/participants/bob/cart").json()
            assert cart["item_count"] == 0
