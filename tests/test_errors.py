"""Tests for error mapping."""

import asyncio

import pytest

from mangareader.errors import (
    DatasourceError,
    ErrorKind,
    HttpError,
    ParserError,
    StoreError,
    catch_error,
)


@pytest.mark.parametrize(
    "exc,kind",
    [
        (HttpError.response_not_ok(500), ErrorKind.NETWORK),
        (ParserError.parameter_not_found("hash"), ErrorKind.PARSING),
        (StoreError("locked"), ErrorKind.DATABASE),
        (KeyError("boom"), ErrorKind.UNEXPECTED),
    ],
)
def test_catch_error_maps_kinds(exc, kind):
    error = catch_error(exc)
    assert error.kind is kind
    assert error.message == str(exc)


def test_cancellation_is_not_an_error():
    assert catch_error(asyncio.CancelledError()) is None


def test_datasource_error_passes_through():
    error = DatasourceError.other("Page index out of bounds")
    assert catch_error(error) is error


def test_description():
    assert DatasourceError.network("timeout").description == "Error during network request\ntimeout"
    assert DatasourceError.other("Page not found").description == "Page not found"


def test_equality():
    assert DatasourceError.other("x") == DatasourceError.other("x")
    assert DatasourceError.other("x") != DatasourceError.parsing("x")
    assert len({DatasourceError.other("x"), DatasourceError.other("x")}) == 1


def test_http_error_keeps_status():
    error = HttpError.response_not_ok(429)
    assert error.status == 429
    assert "429" in str(error)


def test_unexpected_without_message_uses_class_name():
    assert catch_error(RuntimeError()).message == "RuntimeError"
