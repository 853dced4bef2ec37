"""
Property-based tests for the failure classifier.

Classification must be total (every input maps to exactly one category) and
the local-issue flag must depend on the category alone.
"""

import asyncio
import ssl

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from dataset_monitor.classifier import (
    LOCAL_ISSUE_CATEGORIES,
    classify,
    error_chain_text,
    is_likely_local_issue,
)
from dataset_monitor.enums import ErrorCategory


def _connect_error(message: str, cause: BaseException = None) -> httpx.ConnectError:
    error = httpx.ConnectError(message)
    if cause is not None:
        error.__cause__ = cause
    return error


class TestStatusClassificationProperty:
    """HTTP error statuses map by class."""

    @given(status=st.integers(min_value=500, max_value=599))
    @settings(max_examples=100)
    def test_5xx_is_server_error(self, status: int) -> None:
        assert classify(status) == ErrorCategory.SERVER_ERROR

    @given(status=st.integers(min_value=400, max_value=499))
    @settings(max_examples=100)
    def test_4xx_is_client_error(self, status: int) -> None:
        assert classify(status) == ErrorCategory.CLIENT_ERROR

    @given(status=st.one_of(
        st.integers(min_value=-1000, max_value=399),
        st.integers(min_value=600, max_value=10000),
    ))
    @settings(max_examples=100)
    def test_other_statuses_are_unknown(self, status: int) -> None:
        assert classify(status) == ErrorCategory.UNKNOWN

    def test_examples(self) -> None:
        assert classify(503) == ErrorCategory.SERVER_ERROR
        assert classify(404) == ErrorCategory.CLIENT_ERROR
        assert not is_likely_local_issue(classify(503))
        assert not is_likely_local_issue(classify(404))


class TestTransportClassificationProperty:
    """Transport errors map by kind and cause text."""

    def test_timeouts(self) -> None:
        for error in (
            httpx.ReadTimeout("read timed out"),
            httpx.ConnectTimeout("connect timed out"),
            httpx.PoolTimeout("pool timed out"),
            asyncio.TimeoutError(),
        ):
            assert classify(error) == ErrorCategory.TIMEOUT
        assert is_likely_local_issue(ErrorCategory.TIMEOUT)

    def test_connection_refused(self) -> None:
        error = _connect_error(
            "All connection attempts failed",
            ConnectionRefusedError(111, "Connection refused"),
        )
        assert classify(error) == ErrorCategory.CONNECTION_REFUSED
        assert not is_likely_local_issue(classify(error))

    def test_dns_failures(self) -> None:
        for message in (
            "[Errno -2] Name or service not known",
            "[Errno 8] nodename nor servname provided, or not known",
            "failed to resolve host",
            "dns error: no record found",
            "Temporary failure in name resolution",
        ):
            error = _connect_error(message)
            assert classify(error) == ErrorCategory.DNS_RESOLUTION, message
            assert is_likely_local_issue(classify(error))

    def test_dns_failure_in_cause_chain(self) -> None:
        error = _connect_error("connect failed", OSError("getaddrinfo failed"))
        assert classify(error) == ErrorCategory.DNS_RESOLUTION

    def test_unreachable_network(self) -> None:
        for message in ("[Errno 101] Network is unreachable", "No route to host"):
            assert classify(_connect_error(message)) == ErrorCategory.NETWORK_CONNECTION

    def test_other_connect_failures_default_to_network(self) -> None:
        assert classify(_connect_error("something odd")) == ErrorCategory.NETWORK_CONNECTION

    def test_too_many_redirects(self) -> None:
        error = httpx.TooManyRedirects("Exceeded maximum allowed redirects.")
        assert classify(error) == ErrorCategory.TOO_MANY_REDIRECTS
        assert not is_likely_local_issue(ErrorCategory.TOO_MANY_REDIRECTS)

    def test_request_build_errors(self) -> None:
        for error in (
            httpx.UnsupportedProtocol("Request URL has an unsupported protocol 'ftp://'."),
            httpx.InvalidURL("Invalid URL"),
            asyncio.CancelledError(),
        ):
            assert classify(error) == ErrorCategory.REQUEST_CANCELED
        assert is_likely_local_issue(ErrorCategory.REQUEST_CANCELED)

    def test_tls_failures(self) -> None:
        error = httpx.ReadError("read failed")
        error.__cause__ = ssl.SSLError("TLSV1_ALERT_PROTOCOL_VERSION")
        assert classify(error) == ErrorCategory.SSL_CERTIFICATE
        assert classify(RuntimeError("certificate verify failed")) == ErrorCategory.SSL_CERTIFICATE

    def test_unrecognised_errors_are_unknown(self) -> None:
        assert classify(RuntimeError("boom")) == ErrorCategory.UNKNOWN
        assert classify(httpx.RemoteProtocolError("peer closed")) == ErrorCategory.UNKNOWN

    def test_non_error_inputs_are_unknown(self) -> None:
        assert classify(True) == ErrorCategory.UNKNOWN
        assert classify("503") == ErrorCategory.UNKNOWN
        assert classify(None) == ErrorCategory.UNKNOWN


class TestTotalityProperty:
    """Any exception or integer yields one of the known categories."""

    @given(
        message=st.text(max_size=80),
        kind=st.sampled_from([
            httpx.ConnectError,
            httpx.ReadError,
            httpx.WriteError,
            httpx.RemoteProtocolError,
            httpx.TooManyRedirects,
            RuntimeError,
            OSError,
            ValueError,
        ]),
    )
    @settings(max_examples=100)
    def test_classify_is_total_for_exceptions(self, message: str, kind) -> None:
        category = classify(kind(message))
        assert isinstance(category, ErrorCategory)

    @given(value=st.integers())
    @settings(max_examples=100)
    def test_classify_is_total_for_statuses(self, value: int) -> None:
        assert isinstance(classify(value), ErrorCategory)

    @given(category=st.sampled_from(list(ErrorCategory)))
    @settings(max_examples=50)
    def test_local_flag_is_a_pure_lookup(self, category: ErrorCategory) -> None:
        assert is_likely_local_issue(category) == (category in LOCAL_ISSUE_CATEGORIES)
        assert is_likely_local_issue(category) == is_likely_local_issue(category)

    def test_local_issue_set(self) -> None:
        assert LOCAL_ISSUE_CATEGORIES == {
            ErrorCategory.NETWORK_CONNECTION,
            ErrorCategory.DNS_RESOLUTION,
            ErrorCategory.TIMEOUT,
            ErrorCategory.REQUEST_CANCELED,
        }


class TestErrorChainText:
    def test_includes_causes_and_stops_on_cycles(self) -> None:
        inner = OSError("inner reason")
        outer = RuntimeError("outer")
        outer.__cause__ = inner
        inner.__context__ = outer  # cycle

        text = error_chain_text(outer)

        assert "outer" in text
        assert "inner reason" in text
        assert text == text.lower()
