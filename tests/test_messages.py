import json

import pytest

from gridloss.messages import MessageError, RtdbMessage, encode_rtdb_data, parse_rtdb_data


def test_parse_array_keeps_extra_fields():
    points = parse_rtdb_data(b'[{"id": 42, "value": 0, "ts": 1700000000, "q": 1}, {"id": 43, "value": 1.25}]')

    assert [(p.id, p.value) for p in points] == [(42, 0.0), (43, 1.25)]
    assert points[0].extra == {"ts": 1700000000, "q": 1}


def test_parse_single_object():
    assert parse_rtdb_data('{"id": 7, "value": 3}') == [RtdbMessage(id=7, value=3.0)]


def test_parse_empty_array():
    assert parse_rtdb_data(b"[]") == []


@pytest.mark.parametrize("frame", [
    b"not-json",
    b"",
    b"42",
    b'[{"value": 1}]',
    b'[{"id": 1}]',
    b'[{"id": "x", "value": 1}]',
    b'[{"id": -1, "value": 1}]',
    b'[{"id": 1, "value": [1]}]',
    b"[1, 2]",
])
def test_malformed_frames(frame):
    with pytest.raises(MessageError):
        parse_rtdb_data(frame)


def test_encode_passes_extra_fields_through():
    data = encode_rtdb_data([RtdbMessage(id=80, value=4, extra={"ts": 5})])
    assert json.loads(data) == [{"ts": 5, "id": 80, "value": 4}]


def test_encode_rejects_nan():
    with pytest.raises(MessageError):
        encode_rtdb_data([RtdbMessage(id=1, value=float("nan"))])
