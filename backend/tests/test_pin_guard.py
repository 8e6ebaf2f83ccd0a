import statistics
import time

import pytest

from giggle.core.errors import ValidationError
from giggle.core.security import redact_pin


def test_hash_then_verify(pins):
    record = pins.hash("1234")
    assert pins.verify("1234", record)
    assert not pins.verify("1235", record)
    assert not pins.verify("12345", record)


def test_hash_is_salted(pins):
    a, b = pins.hash("4321"), pins.hash("4321")
    assert a != b
    assert pins.verify("4321", a) and pins.verify("4321", b)


def test_record_format(pins):
    salt, sep, key = pins.hash("123456").partition(":")
    assert sep == ":"
    assert len(salt) == 32
    assert len(key) == pins.key_length * 2
    int(salt, 16), int(key, 16)


@pytest.mark.parametrize("pin", ["123", "1234567", "12a4", "", " 1234", "١٢٣٤", None])
def test_invalid_format_rejected(pins, pin):
    assert not pins.is_valid_format(pin)
    with pytest.raises(ValidationError):
        pins.hash(pin)


@pytest.mark.parametrize("record", ["", "nocolon", ":abcd", "abcd:", None, "zz:zz"])
def test_verify_never_raises_on_bad_records(pins, record):
    assert pins.verify("1234", record) is False


def test_verify_rejects_badly_formatted_pin(pins):
    record = pins.hash("1234")
    assert pins.verify("1234 ", record) is False
    assert pins.verify("abcd", record) is False


def test_redact_pin():
    assert redact_pin("1234") == "****"
    assert redact_pin("set pin 987654") == "set pin ****"
    assert redact_pin("my PIN is 4321 thanks") == "my PIN is **** thanks"
    assert redact_pin("send $10 to +14155550102") == "send $10 to +14155550102"


def _median_verify_seconds(pins, pin, record, rounds):
    samples = []
    for _ in range(rounds):
        start = time.perf_counter()
        pins.verify(pin, record)
        samples.append(time.perf_counter() - start)
    return statistics.median(samples)


def test_verify_time_independent_of_mismatch_position(pins):
    record = pins.hash("123456")
    early, late = "923456", "123459"
    # warm up
    pins.verify(early, record)
    pins.verify(late, record)

    early_times, late_times = [], []
    for _ in range(5):
        early_times.append(_median_verify_seconds(pins, early, record, 10))
        late_times.append(_median_verify_seconds(pins, late, record, 10))
    ratio = statistics.median(early_times) / statistics.median(late_times)
    assert 0.5 < ratio < 2.0
