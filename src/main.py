"""Main application entry point for the table order service.

This module provides the FastAPI application factory and configuration
for running the service locally or in production.
"""

import logging
import os
import secrets
from typing import Any

import boto3
from fastapi import FastAPI

from table_order_service.handlers.api_handler import create_app
from table_order_service.observability import configure_logging, setup_observability
from table_order_service.repositories.confirmation_repository import (
    ConfirmationRepository,
    SubmissionClaimRepository,
)
from table_order_service.repositories.order_repositories import (
    FeedbackRepository,
    MenuRepository,
    OrderRepository,
    ReservationRepository,
)
from table_order_service.services.ai_client import AIClient
from table_order_service.services.feedback_service import FeedbackService
from table_order_service.services.menu_service import MenuService
from table_order_service.services.order_service import OrderService
from table_order_service.services.session_service import ReservationValidator, SessionRegistry
from table_order_service.services.session_store import SessionStore
from table_order_service.storage.dynamodb_gateway import DynamoDBGateway
from table_order_service.storage.gateway import TABLE_SCHEMAS, StorageGateway
from table_order_service.storage.memory_gateway import InMemoryGateway

logger = logging.getLogger(__name__)


def get_dynamodb_resource() -> Any:
    """Create DynamoDB resource with appropriate configuration.

    Returns:
        Boto3 DynamoDB resource configured for environment
    """
    # Check for local DynamoDB endpoint (for development)
    endpoint_url = os.getenv("DYNAMODB_ENDPOINT")
    region = os.getenv("AWS_REGION", "us-east-1")

    if endpoint_url:
        access_key = os.getenv("AWS_ACCESS_KEY_ID")
        secret_key = os.getenv("AWS_SECRET_ACCESS_KEY")
        logger.info(f"Using local DynamoDB at {endpoint_url}")
        return boto3.resource(
            "dynamodb",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )
    else:
        logger.info(f"Using AWS DynamoDB in region {region}")
        # Production - boto3 will use default credential chain (IAM role, env vars, etc.)
        return boto3.resource("dynamodb", region_name=region)


def get_table_names() -> dict[str, str]:
    """Physical DynamoDB table per logical table.

    ``DYNAMODB_ORDER_CONFIRMATIONS_TABLE`` overrides ``order_confirmations``
    and so on; unset tables keep their logical name.
    """
    return {
        name: os.getenv(f"DYNAMODB_{name.upper()}_TABLE", name) for name in TABLE_SCHEMAS
    }


def create_storage_gateway() -> StorageGateway:
    """Create the storage gateway selected by STORAGE_BACKEND.

    Raises:
        ValueError: If STORAGE_BACKEND names an unknown backend
    """
    backend = os.getenv("STORAGE_BACKEND", "dynamodb").lower()

    if backend == "memory":
        logger.warning("Using in-memory storage - data is lost on restart")
        return InMemoryGateway()

    if backend == "dynamodb":
        table_names = get_table_names()
        logger.info(f"DynamoDB tables configured: {', '.join(table_names.values())}")
        return DynamoDBGateway(dynamodb_resource=get_dynamodb_resource(), table_names=table_names)

    raise ValueError(f"Unknown STORAGE_BACKEND '{backend}' (expected 'dynamodb' or 'memory')")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application with all dependencies.

    This factory function:
    1. Configures logging
    2. Creates the storage gateway
    3. Initializes repositories
    4. Creates services and the session registry
    5. Creates FastAPI app with diner and staff endpoints
    6. Sets up observability

    Returns:
        Configured FastAPI application instance
    """
    # Configure structured logging
    log_level = os.getenv("LOG_LEVEL", "INFO")
    configure_logging(log_level)

    logger.info("Initializing table order service...")

    gateway = create_storage_gateway()

    # Create repositories
    confirmation_repository = ConfirmationRepository(gateway)
    order_repository = OrderRepository(gateway)
    menu_repository = MenuRepository(gateway)
    feedback_repository = FeedbackRepository(gateway)
    reservation_repository = ReservationRepository(gateway)

    claims_enabled = os.getenv("ENABLE_SUBMISSION_CLAIMS", "true").lower() == "true"
    claim_repository = SubmissionClaimRepository(gateway) if claims_enabled else None
    if not claims_enabled:
        logger.warning("Submission claims disabled - concurrent readiness may place duplicate orders")

    # Create services
    ai_client = AIClient()
    order_service = OrderService(order_repository=order_repository)
    menu_service = MenuService(menu_repository=menu_repository, ai_client=ai_client)
    feedback_service = FeedbackService(feedback_repository=feedback_repository)

    session_duration = int(os.getenv("SESSION_DURATION_SECONDS", "3600"))
    idle_ttl = int(os.getenv("SESSION_IDLE_TTL_SECONDS", "14400"))
    registry = SessionRegistry(
        confirmations=confirmation_repository,
        order_service=order_service,
        store=SessionStore(idle_ttl_seconds=idle_ttl),
        reservation_validator=ReservationValidator(reservation_repository),
        claims=claim_repository,
        session_duration_seconds=session_duration,
    )

    logger.info(
        f"Services initialized - session duration: {session_duration}s, "
        f"idle local state TTL: {idle_ttl}s"
    )

    # Get API keys for staff endpoints
    api_keys_str = os.getenv("ADMIN_API_KEY", "")
    api_keys = [key.strip() for key in api_keys_str.split(",") if key.strip()]

    if not api_keys:
        logger.warning("No ADMIN_API_KEY configured - staff endpoints will not be accessible")
        # Random key nobody knows keeps the validator satisfied
        api_keys = [secrets.token_urlsafe(32)]

    app = create_app(
        registry=registry,
        menu_service=menu_service,
        order_service=order_service,
        feedback_service=feedback_service,
        ai_client=ai_client,
        api_keys=api_keys,
    )

    setup_observability(app)

    logger.info("Table order service initialized successfully")

    return app


# Create the FastAPI application instance (only when not in test mode)
# This prevents the app from being created during test collection
if os.getenv("ENVIRONMENT") != "test":  # noqa: SIM108
    app = create_application()
else:
    # Create a placeholder app for test imports
    app = FastAPI()


if __name__ == "__main__":
    """Run the application with uvicorn when executed directly."""
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "0.0.0.0")

    logger.info(f"Starting development server on {host}:{port}")
    logger.info(f"API documentation available at http://{host}:{port}/docs")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=True,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
