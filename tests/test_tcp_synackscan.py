from fastprobe.packet import (
    IPPROTO_TCP,
    TH_ACK,
    TH_RST,
    TH_SYN,
    IPv4Header,
    ProbeConfig,
    TcpHeader,
    ip_checksum,
    tcp_checksum,
)
from fastprobe.tcp_synackscan import SynAckScan

CONFIG = ProbeConfig(source_port_first=50000, source_port_last=50019, target_port=443)
VALIDATION = [0x0A0B0C0D, 3, 0x01020304, 0]


def _scan():
    return SynAckScan(CONFIG)


def _reply(seq, ack, flags, ident=4242):
    dport = CONFIG.source_port(VALIDATION, 0)
    tcp = TcpHeader(sport=443, dport=dport, seq=seq, ack=ack, flags=flags).pack()
    ip = IPv4Header(src="203.0.113.5", dst="192.0.2.1", protocol=IPPROTO_TCP,
                    total_length=20 + len(tcp), identification=ident)
    return ip.pack() + tcp


def test_make_packet_sets_syn_ack_numbers():
    frame = _scan().make_packet("192.0.2.1", "203.0.113.5", 32, VALIDATION, 0)
    assert len(frame) == SynAckScan.packet_length
    tcp = TcpHeader.parse(frame[34:])
    assert tcp.flags == TH_SYN | TH_ACK
    assert tcp.seq == VALIDATION[0]
    assert tcp.ack == VALIDATION[2]
    assert tcp.dport == 443
    assert ip_checksum(frame[14:34]) == 0
    assert tcp_checksum("192.0.2.1", "203.0.113.5", frame[34:]) == 0


def test_non_rst_requires_ack():
    scan = _scan()
    assert scan.validate_packet(_reply(7, VALIDATION[0] + 1, TH_SYN | TH_ACK), VALIDATION)
    assert not scan.validate_packet(_reply(VALIDATION[2], 0, TH_SYN | TH_ACK), VALIDATION)


def test_rst_accepted_forms():
    scan = _scan()
    assert scan.validate_packet(_reply(0, VALIDATION[0] + 1, TH_RST), VALIDATION)
    assert scan.validate_packet(_reply(VALIDATION[2], 0, TH_RST), VALIDATION)
    assert scan.validate_packet(_reply(VALIDATION[2] + 1, 0, TH_RST), VALIDATION)


def test_rst_rejected_when_nothing_matches():
    assert not _scan().validate_packet(_reply(VALIDATION[2] + 2, 5, TH_RST), VALIDATION)


def test_wrong_source_port_rejected():
    dport = CONFIG.source_port(VALIDATION, 0)
    tcp = TcpHeader(sport=80, dport=dport, ack=VALIDATION[0] + 1, flags=TH_RST).pack()
    ip = IPv4Header(src="203.0.113.5", dst="192.0.2.1", protocol=IPPROTO_TCP,
                    total_length=40).pack()
    assert not _scan().validate_packet(ip + tcp, VALIDATION)


def test_process_rst_counts_as_success():
    fs = _scan().process_packet(bytes(14) + _reply(VALIDATION[2], 0, TH_RST), VALIDATION)
    assert fs.names() == _scan().field_names()
    assert fs.get("classification") == "rst"
    assert fs.get("success") is True
    assert fs.get("ipid") == 4242


def test_process_synack():
    fs = _scan().process_packet(
        bytes(14) + _reply(1, VALIDATION[0] + 1, TH_SYN | TH_ACK), VALIDATION
    )
    assert fs.get("classification") == "synack"
    assert fs.get("success") is True
    assert fs.get("seqnum") == 1