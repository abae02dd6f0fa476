"""OpenTelemetry logging and tracing for memory operations"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from opentelemetry import trace
from opentelemetry._logs import SeverityNumber, set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from journal_memory.config import AppConfig, config

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("journal_memory")

_SEVERITY_LEVELS = (
    (logging.CRITICAL, SeverityNumber.FATAL),
    (logging.ERROR, SeverityNumber.ERROR),
    (logging.WARNING, SeverityNumber.WARN),
    (logging.INFO, SeverityNumber.INFO),
)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _signal_endpoint(base: str, path: str) -> str:
    if base.endswith(path):
        return base
    return f"{base.rstrip('/')}{path}"


class TelemetryService:
    """Emit OpenTelemetry log records and spans for searches, drains and rebuilds"""

    def __init__(self, settings: AppConfig | None = None):
        self.config = settings or config
        self.logging_enabled = self.config.otel_logging_enabled
        self.tracing_enabled = self.config.otel_tracing_enabled
        self.logger_provider: LoggerProvider | None = None
        self.tracer_provider: TracerProvider | None = None
        self.otel_logger = None

        if self.logging_enabled:
            try:
                self._initialize_logging()
            except Exception as e:
                logger.warning(f"Failed to initialize OTel logging: {e}. Logging disabled.")
                self.logging_enabled = False

        if self.tracing_enabled:
            try:
                self._initialize_tracing()
            except Exception as e:
                logger.warning(f"Failed to initialize OTel tracing: {e}. Tracing disabled.")
                self.tracing_enabled = False

    def _resource(self) -> Resource:
        return Resource(
            attributes={
                SERVICE_NAME: self.config.otel_service_name,
                SERVICE_VERSION: self.config.otel_service_version,
            }
        )

    def _initialize_logging(self) -> None:
        """Initialize OpenTelemetry logging with OTLP log exporter"""
        self.logger_provider = LoggerProvider(resource=self._resource())

        log_endpoint = _signal_endpoint(self.config.otel_endpoint, "/v1/logs")
        self.logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(OTLPLogExporter(endpoint=log_endpoint))
        )
        set_logger_provider(self.logger_provider)
        self.otel_logger = self.logger_provider.get_logger(__name__)

        logger.info(f"OpenTelemetry logging initialized with endpoint: {log_endpoint}")

    def _initialize_tracing(self) -> None:
        """Initialize OpenTelemetry tracing with OTLP trace exporter"""
        self.tracer_provider = TracerProvider(resource=self._resource())

        trace_endpoint = _signal_endpoint(self.config.otel_endpoint, "/v1/traces")
        self.tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=trace_endpoint))
        )
        trace.set_tracer_provider(self.tracer_provider)

        logger.info(f"OpenTelemetry tracing initialized with endpoint: {trace_endpoint}")

    def log_operation(  # noqa: C901
        self,
        operation: str,
        query: str | None,
        parameters: dict[str, Any],
        response: dict[str, Any] | None = None,
        error: Exception | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Log a memory operation and its outcome to OpenTelemetry

        Args:
            operation: Name of the operation (search, rebuild_index, drain_queue, ...)
            query: The query text (for search) or None
            parameters: Parameters passed to the operation
            response: The response data (if successful)
            error: The error (if failed)
            metadata: Additional low-cardinality attributes
        """
        if not self.logging_enabled or not self.otel_logger:
            return

        try:
            # Attributes stay low cardinality; free text goes in the body
            attributes: dict[str, str | int | float | bool] = {
                "memory.operation": operation,
                "timestamp": datetime.now(UTC).isoformat(),
            }

            for name in ("limit", "min_score", "day_id"):
                value = parameters.get(name)
                if value is not None:
                    attributes[f"query.param.{name}"] = value

            success = error is None
            attributes["response.success"] = success

            if response:
                attributes["response.size_bytes"] = len(json.dumps(response, default=str))
                if operation == "search" and "results" in response:
                    attributes.update(self._search_attributes(response))

            if metadata:
                for key, value in metadata.items():
                    if isinstance(value, str | int | float | bool):
                        attributes[f"memory.{key}"] = value

            if error:
                attributes["error.type"] = type(error).__name__
                attributes["error.message"] = _truncate(str(error), 500)

            body = [f"[{operation}]", "SUCCESS" if success else "FAILED"]

            if query:
                body.append(f'query="{_truncate(query, 200)}"')
                if self.config.otel_log_full_results:
                    attributes["query.full_text"] = query

            if response and operation == "search":
                query_time = response.get("search_info", {}).get("query_time_ms", 0)
                body.append(f"results={len(response.get('results', []))} time={query_time:.1f}ms")

            if error:
                body.append(f"error={type(error).__name__}")

            severity = logging.ERROR if error else logging.INFO

            self.otel_logger.emit(
                body=" ".join(body),
                severity_number=SeverityNumber(self._severity_to_number(severity)),
                attributes=attributes,
                timestamp=int(datetime.now(UTC).timestamp() * 1e9),
            )

        except Exception as e:
            # Don't let telemetry errors break the application
            logger.warning(f"Failed to log telemetry: {e}")

    def _search_attributes(self, response: dict[str, Any]) -> dict[str, str | int | float]:
        results = response.get("results", [])
        search_info = response.get("search_info", {})

        attributes: dict[str, str | int | float] = {"response.result_count": len(results)}
        if results and results[0].get("score") is not None:
            attributes["response.top_score"] = float(results[0]["score"])
        if "query_time_ms" in search_info:
            attributes["response.query_time_ms"] = float(search_info["query_time_ms"])
        if "candidates_scored" in search_info:
            attributes["response.candidates_scored"] = int(search_info["candidates_scored"])
        if self.config.otel_log_full_results:
            attributes["response.results_json"] = json.dumps(results, default=str)
        return attributes

    def _severity_to_number(self, level: int) -> int:
        """Map a Python logging level onto the OpenTelemetry severity scale"""
        for threshold, severity in _SEVERITY_LEVELS:
            if level >= threshold:
                return severity.value
        return SeverityNumber.DEBUG.value

    def shutdown(self) -> None:
        """Flush and shut down providers created by this service"""
        if self.logger_provider is not None:
            self.logger_provider.shutdown()
        if self.tracer_provider is not None:
            self.tracer_provider.shutdown()
