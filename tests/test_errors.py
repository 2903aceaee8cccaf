import pytest

from clusterregistry.errors import ErrorBody, HTTPError, new_error, not_found


@pytest.mark.parametrize(
    "body, expected",
    [
        (new_error(Exception("Validation failed")), {"body": "Validation failed"}),
        (new_error(HTTPError(502, "Bad gateway")), {"body": "Bad gateway"}),
        (not_found(), {"body": "resource not found"}),
    ],
)
def test_error_bodies(body, expected):
    assert body.errors == expected


def test_to_dict_wraps_errors():
    assert not_found().to_dict() == {"errors": {"body": "resource not found"}}


def test_value_error_message_is_kept():
    assert new_error(ValueError("invalid query")).to_dict() == {
        "errors": {"body": "invalid query"}
    }


def test_http_error_keeps_code_and_message():
    err = HTTPError(502, "Bad gateway")
    assert err.code == 502
    assert new_error(err) == ErrorBody({"body": "Bad gateway"})


def test_to_dict_returns_copy():
    body = not_found()
    body.to_dict()["errors"]["body"] = "changed"
    assert body.errors["body"] == "resource not found"