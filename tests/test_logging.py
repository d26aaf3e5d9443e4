import logging

import pytest

from nowplaying.api.core.logging import RedactSecrets


def _record(msg: str, *args) -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Authorization: Bearer abc.def", "Authorization: Bearer ***"),
        ("POST /token access_token=xyz&scope=a", "POST /token access_token=***&scope=a"),
        ("callback code=AQB12 state=s", "callback code=*** state=s"),
        ("nothing to hide", "nothing to hide"),
    ],
)
def test_secrets_are_masked(message, expected):
    record = _record(message)

    assert RedactSecrets().filter(record) is True
    assert record.getMessage() == expected


def test_arguments_are_folded_into_the_masked_message():
    record = _record("refresh for %s: refresh_token=%s", "u1", "r-123")

    RedactSecrets().filter(record)

    assert record.getMessage() == "refresh for u1: refresh_token=***"
