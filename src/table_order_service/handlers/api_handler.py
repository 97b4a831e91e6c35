"""FastAPI application for diners at a table and for kitchen staff."""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from table_order_service.auth.api_dependencies import get_api_key_from_header
from table_order_service.auth.api_key_validator import APIKeyValidator
from table_order_service.errors import (
    AIServiceError,
    InvalidSessionError,
    OrderSubmissionError,
    ReservationError,
    SessionExpiredError,
    SessionNotFoundError,
    StorageError,
)
from table_order_service.models.cart_models import CartItem
from table_order_service.models.menu_models import MenuItem
from table_order_service.models.order_models import OrderItem, OrderStatusEnum
from table_order_service.services.ai_client import AIClient
from table_order_service.services.consensus import ConsensusEngine, ConsensusSnapshot
from table_order_service.services.feedback_service import FeedbackService
from table_order_service.services.menu_service import MenuService
from table_order_service.services.order_service import OrderService
from table_order_service.services.session_service import SessionRegistry, parse_entry_parameters

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str


class SessionRequest(BaseModel):
    """Entry into the ordering flow, from a scanned QR payload or URL parameters."""

    qr: str | None = Field(None, description="Raw QR payload (JSON or key=value pairs)")
    table_id: str | None = None
    reservation_id: str | None = None
    reservation_name: str | None = None
    ai_provider: str | None = None
    language: str | None = None
    user_id: str | None = Field(None, description="Existing participant id when re-entering")


class ConsensusResponse(BaseModel):
    """A participant's view of the table's readiness."""

    state: str
    confirmed_count: int
    total_count: int
    status_label: str
    ready_button_label: str
    can_confirm: bool
    group_items: list[CartItem]
    order_id: str | None = None
    claimed_elsewhere: bool = False
    last_error: str | None = None

    @classmethod
    def from_engine(
        cls, engine: ConsensusEngine, snapshot: ConsensusSnapshot | None = None
    ) -> "ConsensusResponse":
        """Build the view from ``snapshot``, or the engine's current one."""
        snapshot = snapshot or engine.snapshot
        return cls(
            state=snapshot.state.value,
            confirmed_count=snapshot.confirmed_count,
            total_count=snapshot.total_count,
            status_label=snapshot.status_label,
            ready_button_label=snapshot.ready_button_label,
            can_confirm=snapshot.can_confirm,
            group_items=snapshot.group_items,
            order_id=snapshot.order_id,
            claimed_elsewhere=snapshot.claimed_elsewhere,
            last_error=engine.last_error,
        )


class SessionResponse(BaseModel):
    """Participant session details returned on entry."""

    table_id: str
    user_id: str
    language: str
    ai_provider: str
    reservation_id: str | None = None
    order_id: str | None = None
    expires_at: datetime
    consensus: ConsensusResponse


class CartResponse(BaseModel):
    """A participant's cart with the table's readiness alongside."""

    items: list[CartItem]
    item_count: int
    total: Decimal
    added: bool | None = None
    consensus: ConsensusResponse


class AddItemRequest(BaseModel):
    """Request to add a menu item to the cart."""

    menu_item_id: str


class ChatRequest(BaseModel):
    """A diner's question for the assistant."""

    message: str = Field(..., min_length=1)


class AssistantResponse(BaseModel):
    """Assistant reply."""

    reply: str


class OrderItemStatusResponse(BaseModel):
    """Kitchen progress of one ordered item."""

    id: str
    menu_item_id: str
    menu_item_name: str | None = None
    quantity: int
    status: OrderStatusEnum
    progress_percentage: float

    @classmethod
    def from_order_item(cls, item: OrderItem) -> "OrderItemStatusResponse":
        return cls(
            id=item.id,
            menu_item_id=item.menu_item_id,
            menu_item_name=item.menu_item_name,
            quantity=item.quantity,
            status=item.status,
            progress_percentage=item.progress_percentage,
        )


class OrderStatusResponse(BaseModel):
    """Kitchen progress of every item of an order."""

    order_id: str
    items: list[OrderItemStatusResponse]


class FeedbackRequest(BaseModel):
    """Post-meal feedback."""

    rating: int = Field(..., ge=1, le=5)
    feedback: str = ""


class FeedbackResponse(BaseModel):
    """Response model for stored feedback."""

    id: str
    success: bool


class ItemStatusUpdateRequest(BaseModel):
    """Request to move an order item to a new kitchen status."""

    status: OrderStatusEnum


def _cart_response(engine: ConsensusEngine, added: bool | None = None) -> CartResponse:
    items = engine.session.cart.items
    return CartResponse(
        items=items,
        item_count=len(items),
        total=sum((item.price for item in items), Decimal("0")),
        added=added,
        consensus=ConsensusResponse.from_engine(engine),
    )


def _menu_context(menu: list[MenuItem], **extra: Any) -> str:
    entries = [
        {
            "name": item.name,
            "description": item.description,
            "price": str(item.price),
            "category": item.category,
            "allergens": item.allergens,
            "dietary": item.dietary,
        }
        for item in menu
    ]
    return json.dumps({"menu": entries, **extra}, default=str)


def create_app(
    registry: SessionRegistry,
    menu_service: MenuService,
    order_service: OrderService,
    feedback_service: FeedbackService,
    ai_client: AIClient,
    api_keys: list[str],
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        registry: Live participant sessions and their consensus engines
        menu_service: Service for the (translated) menu
        order_service: Service for order status and staff updates
        feedback_service: Service for storing feedback
        ai_client: Client for the assistant
        api_keys: Valid API keys for staff endpoints

    Returns:
        Configured FastAPI application
    """
    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        registry.close_all()
        logger.info("Closed all participant sessions")

    app = FastAPI(
        title="Table Order Service API",
        description="Group ordering at restaurant tables with real-time consensus",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Store services in app state for access in route handlers
    app.state.registry = registry
    app.state.menu_service = menu_service
    app.state.order_service = order_service
    app.state.feedback_service = feedback_service
    app.state.ai_client = ai_client
    app.state.api_key_validator = APIKeyValidator(api_keys=api_keys)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error(f"Storage unavailable for {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Storage is temporarily unavailable"})

    @app.exception_handler(OrderSubmissionError)
    async def submission_error_handler(request: Request, exc: OrderSubmissionError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    def get_engine(table_id: str, user_id: str) -> ConsensusEngine:
        """Resolve a participant's live session."""
        try:
            return app.state.registry.get(table_id, user_id)
        except SessionNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except SessionExpiredError as e:
            raise HTTPException(status_code=401, detail=str(e)) from e

    def validate_api_key(x_api_key: str | None = Header(None)) -> str:
        """Dependency to validate API key."""
        return get_api_key_from_header(x_api_key=x_api_key, validator=app.state.api_key_validator)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        return HealthResponse(status="healthy")

    @app.post("/sessions", response_model=SessionResponse, tags=["Sessions"])
    async def create_session(request: SessionRequest) -> SessionResponse:
        """Enter (or re-enter) the group ordering flow at a table.

        Raises:
            HTTPException: 400 without a table id, 403 on a reservation name mismatch
        """
        params_data = request.model_dump(exclude={"qr", "user_id"}, exclude_none=True)
        try:
            params = parse_entry_parameters(qr=request.qr, params=params_data)
            engine = await app.state.registry.enter(params, user_id=request.user_id)
        except InvalidSessionError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except ReservationError as e:
            raise HTTPException(status_code=403, detail=str(e)) from e

        session = engine.session
        logger.info(f"Session started for {session.user_id} at table {session.table_id}")
        return SessionResponse(
            table_id=session.table_id,
            user_id=session.user_id,
            language=session.language,
            ai_provider=session.ai_provider,
            reservation_id=session.reservation_id,
            order_id=session.order_id,
            expires_at=session.expires_at,
            consensus=ConsensusResponse.from_engine(engine),
        )

    @app.get(
        "/tables/{table_id}/participants/{user_id}/menu",
        response_model=list[MenuItem],
        tags=["Menu"],
    )
    async def get_menu(table_id: str, user_id: str, language: str | None = None) -> list[MenuItem]:
        """Get the menu in the participant's language.

        Passing ``language`` switches the participant's language for later requests.
        """
        engine = get_engine(table_id, user_id)
        if language and language != engine.session.language:
            engine.session.set_language(language)

        menu: list[MenuItem] = await app.state.menu_service.get_menu(
            engine.session.language, engine.session.ai_provider
        )
        return menu

    @app.get(
        "/tables/{table_id}/participants/{user_id}/cart",
        response_model=CartResponse,
        tags=["Cart"],
    )
    async def get_cart(table_id: str, user_id: str) -> CartResponse:
        return _cart_response(get_engine(table_id, user_id))

    @app.post(
        "/tables/{table_id}/participants/{user_id}/cart",
        response_model=CartResponse,
        tags=["Cart"],
    )
    async def add_to_cart(table_id: str, user_id: str, request: AddItemRequest) -> CartResponse:
        """Add a menu item; re-opens consensus for the whole table.

        Unknown menu items leave the cart unchanged and report ``added=false``.
        """
        engine = get_engine(table_id, user_id)
        menu = await app.state.menu_service.get_menu()
        item = await engine.add_item(request.menu_item_id, menu)
        await app.state.registry.settle(table_id)
        return _cart_response(engine, added=item is not None)

    @app.post(
        "/tables/{table_id}/participants/{user_id}/ready",
        response_model=ConsensusResponse,
        tags=["Consensus"],
    )
    async def mark_ready(table_id: str, user_id: str) -> ConsensusResponse:
        """Confirm the participant's cart.

        When this completes the table's consensus, one of the participants'
        sessions places the group order before the response is built.

        Raises:
            HTTPException: 409 if the participant's cart is empty
        """
        engine = get_engine(table_id, user_id)
        if len(engine.session.cart) == 0:
            raise HTTPException(status_code=409, detail="Add at least one item before confirming")

        await engine.mark_ready()
        await app.state.registry.settle(table_id)
        return ConsensusResponse.from_engine(engine)

    @app.get(
        "/tables/{table_id}/participants/{user_id}/consensus",
        response_model=ConsensusResponse,
        tags=["Consensus"],
    )
    async def get_consensus(table_id: str, user_id: str) -> ConsensusResponse:
        return ConsensusResponse.from_engine(get_engine(table_id, user_id))

    @app.websocket("/ws/tables/{table_id}/participants/{user_id}")
    async def consensus_updates(ws: WebSocket, table_id: str, user_id: str) -> None:
        """Push the participant's consensus view every time it changes."""
        await ws.accept()

        try:
            engine: ConsensusEngine = app.state.registry.get(table_id, user_id)
        except (SessionNotFoundError, SessionExpiredError) as e:
            await ws.send_json({"type": "error", "detail": str(e)})
            await ws.close(code=4404)
            return

        async def push(snapshot: ConsensusSnapshot) -> None:
            payload = ConsensusResponse.from_engine(engine, snapshot).model_dump(mode="json")
            await ws.send_json({"type": "consensus", **payload})

        engine.add_listener(push)
        try:
            await push(engine.snapshot)
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            logger.debug(f"Consensus socket closed for {user_id} at table {table_id}")
        finally:
            engine.remove_listener(push)

    @app.post(
        "/tables/{table_id}/participants/{user_id}/assistant/chat",
        response_model=AssistantResponse,
        tags=["Assistant"],
    )
    async def assistant_chat(table_id: str, user_id: str, request: ChatRequest) -> AssistantResponse:
        """Ask the assistant about the menu.

        Raises:
            HTTPException: 502 if the AI provider fails
        """
        engine = get_engine(table_id, user_id)
        menu = await app.state.menu_service.get_menu()
        context = _menu_context(menu, user_query=request.message)
        try:
            reply = await app.state.ai_client.chat(
                context, engine.session.language, engine.session.ai_provider
            )
        except AIServiceError as e:
            raise HTTPException(status_code=502, detail="AI assistant is currently unavailable") from e
        return AssistantResponse(reply=reply)

    @app.get(
        "/tables/{table_id}/participants/{user_id}/assistant/recommendations",
        response_model=AssistantResponse,
        tags=["Assistant"],
    )
    async def assistant_recommendations(table_id: str, user_id: str) -> AssistantResponse:
        engine = get_engine(table_id, user_id)
        menu = await app.state.menu_service.get_menu()
        cart = [item.name for item in engine.session.cart.items]
        context = _menu_context(menu, cart=cart, time=datetime.now(UTC).isoformat())
        reply = await app.state.ai_client.recommend(
            context, engine.session.language, engine.session.ai_provider
        )
        return AssistantResponse(reply=reply)

    @app.get("/orders/{order_id}/status", response_model=OrderStatusResponse, tags=["Orders"])
    async def get_order_status(order_id: str) -> OrderStatusResponse:
        """Get kitchen progress for every item of an order (empty when unknown)."""
        items: list[OrderItem] = await app.state.order_service.get_order_status(order_id)
        return OrderStatusResponse(
            order_id=order_id,
            items=[OrderItemStatusResponse.from_order_item(item) for item in items],
        )

    @app.websocket("/ws/orders/{order_id}")
    async def order_updates(ws: WebSocket, order_id: str) -> None:
        """Push an order's item statuses every time the kitchen updates one."""
        await ws.accept()

        async def push(_event: Any = None) -> None:
            items: list[OrderItem] = await app.state.order_service.get_order_status(order_id)
            payload = OrderStatusResponse(
                order_id=order_id,
                items=[OrderItemStatusResponse.from_order_item(item) for item in items],
            ).model_dump(mode="json")
            await ws.send_json({"type": "order_status", **payload})

        subscription = app.state.order_service.subscribe_order_items(order_id, push)
        try:
            await push()
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            logger.debug(f"Order status socket closed for {order_id}")
        finally:
            subscription.unsubscribe()

    @app.post("/feedback", response_model=FeedbackResponse, status_code=201, tags=["Feedback"])
    async def submit_feedback(request: FeedbackRequest) -> FeedbackResponse:
        feedback = await app.state.feedback_service.submit_feedback(request.rating, request.feedback)
        return FeedbackResponse(id=feedback.id, success=True)

    @app.patch(
        "/admin/orders/{order_id}/items/{item_id}",
        response_model=OrderItemStatusResponse,
        tags=["Admin"],
    )
    async def update_item_status(
        order_id: str,
        item_id: str,
        request: ItemStatusUpdateRequest,
        _api_key: str = Depends(validate_api_key),
    ) -> OrderItemStatusResponse:
        """Move an order item along the kitchen lifecycle.

        Raises:
            HTTPException: 404 if the order item does not exist
        """
        updated: OrderItem | None = await app.state.order_service.update_item_status(
            order_id, item_id, request.status
        )
        if updated is None:
            raise HTTPException(status_code=404, detail=f"Order item {item_id} not found")
        return OrderItemStatusResponse.from_order_item(updated)

    return app
