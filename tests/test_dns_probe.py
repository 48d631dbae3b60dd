import struct

import pytest

from fastprobe.dns_probe import DnsScan, describe_dns_packet, parse_probe_args
from fastprobe.dns_wire import DnsHeader, QType, build_query, domain_to_qname
from fastprobe.fields import FieldSet
from fastprobe.packet import (
    IPPROTO_ICMP,
    IPPROTO_TCP,
    IPPROTO_UDP,
    IcmpHeader,
    IPv4Header,
    ProbeConfig,
    UdpHeader,
    ip_checksum,
)

CONFIG = ProbeConfig(source_port_first=40000, source_port_last=40009, target_port=53)
VALIDATION = (0x01020304, 3, 0xABCD)
OUR_IP = "192.0.2.1"
TARGET = "198.51.100.7"
ROUTER = "203.0.113.9"
ETH = bytes(14)


def udp_ip(src, dst, sport, dport, payload, udp_length=None):
    length = 8 + len(payload) if udp_length is None else udp_length
    udp = UdpHeader(sport=sport, dport=dport, length=length).pack()
    ip = IPv4Header(
        src=src, dst=dst, protocol=IPPROTO_UDP, total_length=20 + 8 + len(payload)
    ).pack()
    return ip + udp + payload


def query_payload(scan, probe_num=0):
    return scan.make_packet(OUR_IP, TARGET, 64, VALIDATION, probe_num)[42:]


def reply_payload(scan, extra=b"", rcode=0, corrupt_id=False):
    query = query_payload(scan)
    header = DnsHeader.parse(query)
    header.qr = 1
    header.rcode = rcode
    header.ancount = 1
    if corrupt_id:
        header.id ^= 0xFFFF
    answer = b"\xc0\x0c" + struct.pack("!HHIH", 1, 1, 60, 4) + bytes([1, 2, 3, 4])
    return header.pack() + query[12:] + answer + extra


def reply_ip(scan, payload, sport=53):
    return udp_ip(TARGET, OUR_IP, sport, CONFIG.source_port(VALIDATION, 0), payload)


def icmp_ip(scan, code=3):
    probe = scan.make_packet(OUR_IP, TARGET, 64, VALIDATION, 0)[14:]
    icmp = IcmpHeader(type=3, code=code).pack()
    ip = IPv4Header(
        src=ROUTER, dst=OUR_IP, protocol=IPPROTO_ICMP,
        total_length=20 + len(icmp) + len(probe),
    ).pack()
    return ip + icmp + probe


def test_parse_probe_args_default():
    assert parse_probe_args(None, 2) == [(QType.A, "www.google.com")] * 2


def test_parse_probe_args_single_and_multiple():
    assert parse_probe_args("A,google.com", 1) == [(QType.A, "google.com")]
    assert parse_probe_args("A,example.com;AAAA,www.example.com", 2) == [
        (QType.A, "example.com"),
        (QType.AAAA, "www.example.com"),
    ]


@pytest.mark.parametrize(
    "args,count",
    [
        ("A,example.com", 2),
        ("A,example.com;", 2),
        ("A,example.com;A,example.org", 1),
        ("A,example.com;", 1),
        ("BOGUS,example.com", 1),
        (",example.com", 1),
        ("A,", 1),
        ("example.com", 1),
    ],
)
def test_parse_probe_args_errors(args, count):
    with pytest.raises(ValueError):
        parse_probe_args(args, count)


def test_make_packet_layout():
    scan = DnsScan(CONFIG)
    frame = scan.make_packet(OUR_IP, TARGET, 64, VALIDATION, 0)
    query = build_query("www.google.com", QType.A)
    assert len(frame) == 14 + 20 + 8 + len(query)
    ip = IPv4Header.parse(frame[14:])
    assert ip.protocol == IPPROTO_UDP
    assert ip.ttl == 64
    assert ip_checksum(frame[14:34]) == 0
    udp = UdpHeader.parse(frame[34:])
    assert udp.sport == CONFIG.source_port(VALIDATION, 0)
    assert udp.dport == 53
    assert udp.length == 8 + len(query)
    dns = frame[42:]
    assert dns[:2] == b"\xcd\xab"
    assert dns[2:] == query[2:]


def test_make_packet_multiple_questions_uses_probe_number():
    config = ProbeConfig(40000, 40009, 53, packet_streams=2)
    scan = DnsScan(config, probe_args="A,example.com;MX,example.org")
    second = scan.make_packet(OUR_IP, TARGET, 64, VALIDATION, 1)[42:]
    assert domain_to_qname("example.org") in second
    assert second[2:] == build_query("example.org", QType.MX)[2:]


def test_validate_accepts_matching_reply():
    scan = DnsScan(CONFIG)
    assert scan.validate_packet(reply_ip(scan, reply_payload(scan)), VALIDATION)


def test_validate_rejects_wrong_source_port():
    scan = DnsScan(CONFIG)
    assert not scan.validate_packet(reply_ip(scan, reply_payload(scan), sport=54), VALIDATION)


def test_validate_rejects_short_udp_length():
    scan = DnsScan(CONFIG)
    packet = udp_ip(TARGET, OUR_IP, 53, CONFIG.source_port(VALIDATION, 0), bytes(12), 20)
    assert not scan.validate_packet(packet, VALIDATION)


def test_process_successful_reply():
    scan = DnsScan(CONFIG)
    fs = scan.process_packet(ETH + reply_ip(scan, reply_payload(scan)), VALIDATION)
    assert fs.get("classification") == "dns"
    assert fs.get("success") is True
    assert fs.get("app_success") is True
    assert fs.get("dns_qr") == 1
    assert fs.get("dns_ancount") == 1
    assert fs.get("dns_parse_err") == 0
    assert fs.get("dns_unconsumed_bytes") == 0
    questions = [f.value for f in fs.get("dns_questions")]
    assert questions[0].get("name") == "www.google.com"
    answers = [f.value for f in fs.get("dns_answers")]
    assert len(answers) == 1
    assert answers[0].get("rdata") == "1.2.3.4"
    assert answers[0].get("type_str") == "A"
    assert isinstance(fs.get("dns_authorities"), FieldSet)
    assert len(fs.get("dns_authorities")) == 0
    assert fs.get("raw_data") == reply_payload(scan)


def test_process_error_rcode_is_not_app_success():
    scan = DnsScan(CONFIG)
    fs = scan.process_packet(ETH + reply_ip(scan, reply_payload(scan, rcode=3)), VALIDATION)
    assert fs.get("success") is True
    assert fs.get("app_success") is False
    assert fs.get("dns_rcode") == 3


def test_process_trailing_bytes_marks_parse_error():
    scan = DnsScan(CONFIG)
    fs = scan.process_packet(
        ETH + reply_ip(scan, reply_payload(scan, extra=b"\x00\x00\x00")), VALIDATION
    )
    assert fs.get("dns_unconsumed_bytes") == 3
    assert fs.get("dns_parse_err") == 1


def test_icmp_unreachable_reply():
    scan = DnsScan(CONFIG)
    packet = icmp_ip(scan, code=20)
    assert scan.validate_packet(packet, VALIDATION)
    fs = scan.process_packet(ETH + packet, VALIDATION)
    assert fs.get("classification") == "icmp-unreach"
    assert fs.get("success") is False
    assert fs.get("icmp_responder") == ROUTER
    assert fs.get("icmp_type") == 3
    assert fs.get("icmp_code") == 20
    assert fs.get("icmp_unreach_str") == "unknown"
    assert fs.get("sport") == CONFIG.source_port(VALIDATION, 0)
    assert fs.get("dport") == 53
    assert fs.get("raw_data") == ETH + packet


def test_icmp_too_short_rejected():
    scan = DnsScan(CONFIG)
    packet = icmp_ip(scan)
    assert not scan.validate_packet(packet[:40], VALIDATION)


def test_describe_dns_packet():
    scan = DnsScan(CONFIG)
    frame = scan.make_packet(OUR_IP, TARGET, 64, VALIDATION, 0)
    text = describe_dns_packet(frame)
    lines = text.splitlines()
    assert lines[0] == "-" * 54
    assert lines[1].startswith(f"dns {{ source: {CONFIG.source_port(VALIDATION, 0)} | dest: 53")
    assert lines[-1] == "-" * 54
    assert TARGET in text


def test_field_names_match_definitions():
    scan = DnsScan(CONFIG)
    names = scan.field_names()
    assert names[0] == "classification"
    assert names[-1] == "raw_data"
    assert len(names) == len(set(names))