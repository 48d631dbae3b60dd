import ipaddress

from fastprobe.fields import FieldType
from fastprobe.icmp_echo_time import IcmpEchoTimeScan
from fastprobe.packet import IcmpHeader, ip_checksum

SRC = "192.0.2.1"
DST = "203.0.113.5"
VALIDATION = (0x11223344, 0x0000ABCD, 0x00001234, 0)


def _scan():
    return IcmpEchoTimeScan(clock=lambda: 1700000000.25)


def _reply(frame, icmp_type=0):
    packet = bytearray(frame[:54])
    packet[34] = icmp_type
    return bytes(packet)


def test_frame_length_and_checksum():
    frame = _scan().make_packet(SRC, DST, 32, VALIDATION, 0)
    assert len(frame) == 62
    assert ip_checksum(frame[34:54]) == 0
    assert IcmpHeader.parse(frame[34:]).type == 8


def test_payload_round_trip():
    scan = _scan()
    frame = scan.make_packet(SRC, DST, 32, VALIDATION, 0)
    fs = scan.process_packet(_reply(frame), VALIDATION)
    assert fs.get("sent_timestamp_ts") == 1700000000
    assert fs.get("sent_timestamp_us") == 250000
    assert fs.get("dst_raw").to_bytes(4, "little") == ipaddress.IPv4Address(DST).packed
    assert fs.get("classification") == "echoreply"
    assert fs.get("success") == 1


def test_failure_success_is_integer():
    scan = _scan()
    frame = scan.make_packet(SRC, DST, 32, VALIDATION, 0)
    fs = scan.process_packet(_reply(frame, icmp_type=3), VALIDATION)
    assert fs.get("classification") == "unreach"
    assert fs.get("success") == 0
    assert [f.kind for f in fs if f.name == "success"] == [FieldType.UINT64]


def test_validate_own_reply():
    scan = _scan()
    frame = scan.make_packet(SRC, DST, 32, VALIDATION, 0)
    assert scan.validate_packet(_reply(frame)[14:], VALIDATION) is True
    assert scan.validate_packet(_reply(frame)[14:], (1, 2, 3, 4)) is False


def test_short_reply_rejected():
    scan = _scan()
    frame = scan.make_packet(SRC, DST, 32, VALIDATION, 0)
    try:
        scan.process_packet(_reply(frame)[:44], VALIDATION)
    except ValueError as exc:
        assert "payload" in str(exc)
    else:
        raise AssertionError("expected ValueError")


def test_declares_nine_fields():
    names = _scan().field_names()
    assert len(names) == 9
    assert "dst-raw" in names