"""Tests for error classes and provider error classification."""

from reconciler.utils.errors import (
    CycleError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    PermanentProviderError,
    ProviderError,
    StoreUnavailable,
    TransientProviderError,
    error_handler,
)


class TestErrorClasses:
    def test_user_message(self):
        error = PermanentProviderError(
            "Subnetwork range overlaps",
            code="invalid",
            context=ErrorContext(resource_id="subnetwork.web", operation="create"),
            suggestions=["Pick a free range"],
        )
        message = error.to_user_message()

        assert message.startswith("ERROR: Subnetwork range overlaps")
        assert "Resource: subnetwork.web" in message
        assert "1. Pick a free range" in message

    def test_to_dict(self):
        data = TransientProviderError("busy", code="backendError").to_dict()

        assert data["type"] == "TransientProviderError"
        assert data["code"] == "backendError"
        assert data["transient"] is True
        assert data["category"] == "provider"

    def test_store_unavailable_is_critical(self):
        error = StoreUnavailable("disk gone")

        assert error.severity == ErrorSeverity.CRITICAL
        assert error.category == ErrorCategory.STATE
        assert error.suggestions

    def test_cycle_error_identities_are_sorted(self):
        error = CycleError("cycle", identities={"network.b", "network.a"})

        assert error.identities == ["network.a", "network.b"]
        assert error.context.additional_info == {"identities": ["network.a", "network.b"]}


class TestErrorHandler:
    def test_known_codes(self):
        assert error_handler.from_code("rateLimitExceeded", "slow down").transient
        assert error_handler.from_code("quotaExceeded", "quota").category == ErrorCategory.RATE_LIMIT
        assert not error_handler.from_code("alreadyExists", "dup").transient
        assert isinstance(error_handler.from_code("notFound", "gone"), PermanentProviderError)

    def test_unknown_code_falls_back_to_status(self):
        assert error_handler.from_code("weird", "boom", status=503).transient
        assert not error_handler.from_code("weird", "boom", status=400).transient
        assert not error_handler.from_code("weird", "boom").transient

    def test_classify_network_errors_as_transient(self):
        error = error_handler.classify(ConnectionError("reset by peer"))

        assert isinstance(error, TransientProviderError)
        assert error.category == ErrorCategory.NETWORK

    def test_classify_other_errors_as_permanent(self):
        error = error_handler.classify(KeyError("name"), ErrorContext(resource_id="network.vpc"))

        assert isinstance(error, PermanentProviderError)
        assert error.code == "KeyError"
        assert error.context.resource_id == "network.vpc"

    def test_classify_keeps_provider_errors(self):
        original = TransientProviderError("busy")
        classified = error_handler.classify(original, ErrorContext(resource_id="network.vpc"))

        assert classified is original
        assert isinstance(classified, ProviderError)
        assert classified.context.resource_id == "network.vpc"

    def test_classify_uses_http_status(self):
        class HTTPError(Exception):
            def __init__(self, message, status):
                super().__init__(message)
                self.status = status

        throttled = error_handler.classify(HTTPError("Too Many Requests", 429))
        assert isinstance(throttled, TransientProviderError)
        assert throttled.code == "http429"
        assert throttled.cause is not None

        assert error_handler.classify(HTTPError("Service Unavailable", 503)).transient
        assert not error_handler.classify(HTTPError("Forbidden", 403)).transient

    def test_classify_uses_reason_code(self):
        error = Exception("Quota 'CPUS' exceeded")
        error.code = "quotaExceeded"

        classified = error_handler.classify(error, ErrorContext(resource_id="network.vpc"))

        assert classified.transient
        assert classified.category == ErrorCategory.RATE_LIMIT
        assert classified.context.resource_id == "network.vpc"

    def test_classify_integer_code_as_status(self):
        error = Exception("Bad Gateway")
        error.code = 502

        assert error_handler.classify(error).code == "http502"
        assert error_handler.classify(error).transient
