import pytest

from fastprobe.packet import (
    IPPROTO_TCP,
    IPPROTO_UDP,
    TH_ACK,
    TH_RST,
    TH_SYN,
    IPv4Header,
    ProbeConfig,
    TcpHeader,
    ip_checksum,
    tcp_checksum,
)
from fastprobe.tcp_synscan import SynScan, describe_tcp_packet

CONFIG = ProbeConfig(source_port_first=40000, source_port_last=40009, target_port=80)
VALIDATION = [0x11223344, 7, 0x55667788, 0]


def _scan():
    return SynScan(CONFIG, src_mac="02:00:00:00:00:01", gw_mac="02:00:00:00:00:02")


def _reply(ack, flags=TH_SYN | TH_ACK, sport=80, dport=None, protocol=IPPROTO_TCP, seq=99):
    if dport is None:
        dport = CONFIG.source_port(VALIDATION, 0)
    tcp = TcpHeader(sport=sport, dport=dport, seq=seq, ack=ack, flags=flags).pack()
    ip = IPv4Header(src="198.51.100.7", dst="192.0.2.1", protocol=protocol,
                    total_length=20 + len(tcp))
    return ip.pack() + tcp


def test_make_packet_layout():
    frame = _scan().make_packet("192.0.2.1", "198.51.100.7", 64, VALIDATION, 0)
    assert len(frame) == SynScan.packet_length
    ip = IPv4Header.parse(frame[14:])
    tcp = TcpHeader.parse(frame[34:])
    assert ip.protocol == IPPROTO_TCP and ip.ttl == 64
    assert tcp.flags == TH_SYN
    assert tcp.seq == VALIDATION[0]
    assert tcp.dport == 80
    assert tcp.sport == CONFIG.source_port(VALIDATION, 0)


def test_make_packet_checksums_valid():
    frame = _scan().make_packet("192.0.2.1", "198.51.100.7", 64, VALIDATION, 0)
    assert ip_checksum(frame[14:34]) == 0
    assert tcp_checksum("192.0.2.1", "198.51.100.7", frame[34:]) == 0


def test_synack_with_right_ack_is_valid():
    assert _scan().validate_packet(_reply(VALIDATION[0] + 1), VALIDATION)


def test_synack_with_wrong_ack_is_invalid():
    assert not _scan().validate_packet(_reply(VALIDATION[0]), VALIDATION)


def test_rst_accepts_seq_or_seq_plus_one():
    scan = _scan()
    assert scan.validate_packet(_reply(VALIDATION[0], flags=TH_RST), VALIDATION)
    assert scan.validate_packet(_reply(VALIDATION[0] + 1, flags=TH_RST), VALIDATION)
    assert not scan.validate_packet(_reply(VALIDATION[0] + 2, flags=TH_RST), VALIDATION)


def test_ack_wraps_around():
    validation = [0xFFFFFFFF, 7, 0, 0]
    dport = CONFIG.source_port(validation, 0)
    assert _scan().validate_packet(_reply(0, dport=dport), validation)


@pytest.mark.parametrize(
    "packet",
    [
        _reply(VALIDATION[0] + 1, sport=81),
        _reply(VALIDATION[0] + 1, dport=39000),
        _reply(VALIDATION[0] + 1, protocol=IPPROTO_UDP),
        _reply(VALIDATION[0] + 1)[:30],
        b"\x45",
    ],
)
def test_mismatched_replies_rejected(packet):
    assert _scan().validate_packet(packet, VALIDATION) is False


def test_process_synack():
    fs = _scan().process_packet(bytes(14) + _reply(VALIDATION[0] + 1), VALIDATION)
    assert fs.names() == _scan().field_names()
    assert fs.get("classification") == "synack"
    assert fs.get("success") is True
    assert fs.get("acknum") == VALIDATION[0] + 1
    assert fs.get("sport") == 80


def test_process_rst():
    fs = _scan().process_packet(bytes(14) + _reply(VALIDATION[0], flags=TH_RST), VALIDATION)
    assert fs.get("classification") == "rst"
    assert fs.get("success") is False


def test_describe_tcp_packet():
    frame = _scan().make_packet("192.0.2.1", "198.51.100.7", 64, VALIDATION, 0)
    text = describe_tcp_packet(frame)
    lines = text.splitlines()
    assert lines[0].startswith("tcp { source: ")
    assert f"seq: {VALIDATION[0]}" in lines[0]
    assert "saddr: 192.0.2.1" in lines[1]
    assert lines[-1] == "-" * 54