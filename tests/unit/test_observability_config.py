"""Unit tests for OpenTelemetry setup."""

import os
from unittest.mock import Mock, patch

import pytest

from table_order_service.observability.config import (
    setup_auto_instrumentation,
    setup_observability,
)

CONFIG = "table_order_service.observability.config"


@pytest.mark.unit
class TestSetupAutoInstrumentation:
    """Tests for setup_auto_instrumentation function."""

    @patch(f"{CONFIG}.BotocoreInstrumentor")
    @patch(f"{CONFIG}.HTTPXClientInstrumentor")
    def test_instruments_httpx_and_botocore(self, mock_httpx: Mock, mock_botocore: Mock) -> None:
        """Test that AI provider calls and DynamoDB calls are instrumented."""
        setup_auto_instrumentation()

        mock_httpx.return_value.instrument.assert_called_once()
        mock_botocore.return_value.instrument.assert_called_once()


@pytest.mark.unit
class TestSetupObservability:
    """Tests for setup_observability function."""

    @patch(f"{CONFIG}.FastAPIInstrumentor")
    @patch(f"{CONFIG}.setup_auto_instrumentation")
    @patch(f"{CONFIG}.setup_metrics")
    @patch(f"{CONFIG}.setup_tracing")
    @patch.dict(os.environ, {"ENVIRONMENT": "test"}, clear=True)
    def test_skips_exporters_in_test_environment(
        self,
        mock_setup_tracing: Mock,
        mock_setup_metrics: Mock,
        mock_auto_instrumentation: Mock,
        mock_fastapi_instrumentor: Mock,
    ) -> None:
        """Test that exporters are not created when ENVIRONMENT=test."""
        app = Mock()

        setup_observability(app)

        mock_setup_tracing.assert_not_called()
        mock_setup_metrics.assert_not_called()
        mock_auto_instrumentation.assert_called_once()
        mock_fastapi_instrumentor.instrument_app.assert_called_once_with(app)

    @patch(f"{CONFIG}.FastAPIInstrumentor")
    @patch(f"{CONFIG}.setup_auto_instrumentation")
    @patch(f"{CONFIG}.setup_metrics")
    @patch(f"{CONFIG}.setup_tracing")
    @patch.dict(os.environ, {"ENVIRONMENT": "production"}, clear=True)
    def test_sets_up_exporters_outside_tests(
        self,
        mock_setup_tracing: Mock,
        mock_setup_metrics: Mock,
        mock_auto_instrumentation: Mock,
        mock_fastapi_instrumentor: Mock,
    ) -> None:
        """Test that tracing and metrics exporters are configured with the service resource."""
        setup_observability()

        mock_setup_tracing.assert_called_once()
        mock_setup_metrics.assert_called_once()
        assert mock_setup_tracing.call_args.args[0].attributes["service.name"] == "table-order-svc"
        mock_auto_instrumentation.assert_called_once()
        mock_fastapi_instrumentor.instrument_app.assert_not_called()
