"""TCP SYN scan: a SYN-ACK reply is success, a RST is failure."""

from __future__ import annotations

from typing import Sequence

from .fields import FieldDef, FieldSet
from .packet import (
    ETHER_HEADER_LEN,
    IP_HEADER_LEN,
    IPPROTO_TCP,
    TCP_HEADER_LEN,
    TH_RST,
    TH_SYN,
    IPv4Header,
    ProbeModule,
    TcpHeader,
    _describe_ethernet,
    _hex16,
    ip_checksum,
    tcp_checksum,
)

_SEPARATOR = "-" * 54
_MASK32 = 0xFFFFFFFF


def describe_tcp_packet(frame: bytes) -> str:
    """Human-readable summary of a TCP probe frame."""
    ip_packet = frame[ETHER_HEADER_LEN:]
    ip = IPv4Header.parse(ip_packet)
    tcp = TcpHeader.parse(ip_packet[ip.header_length :])
    return (
        f"tcp {{ source: {tcp.sport} | dest: {tcp.dport} | seq: {tcp.seq} | "
        f"checksum: {_hex16(tcp.checksum)} }}\n"
        f"{ip}\n{_describe_ethernet(frame)}\n{_SEPARATOR}\n"
    )


class SynScan(ProbeModule):
    name = "tcp_synscan"
    packet_length = 54
    pcap_filter = "tcp && tcp[13] & 4 != 0 || tcp[13] == 18"
    pcap_snaplen = 96
    port_args = True
    fields = (
        FieldDef("sport", "int", "TCP source port"),
        FieldDef("dport", "int", "TCP destination port"),
        FieldDef("seqnum", "int", "TCP sequence number"),
        FieldDef("acknum", "int", "TCP acknowledgement number"),
        FieldDef("window", "int", "TCP window"),
        FieldDef("classification", "string", "packet classification"),
        FieldDef("success", "bool", "is response considered success"),
    )
    helptext = (
        "Probe module that sends a TCP SYN packet to a specific port. Possible "
        "classifications are: synack and rst. A SYN-ACK packet is considered a "
        "success and a reset packet is considered a failed response."
    )

    def _build_frame(self, src_ip, dst_ip, ttl, validation, probe_num, seq, ack, flags) -> bytes:
        ip = IPv4Header(
            src=src_ip,
            dst=dst_ip,
            ttl=ttl,
            protocol=IPPROTO_TCP,
            total_length=IP_HEADER_LEN + TCP_HEADER_LEN,
        )
        tcp = TcpHeader(
            sport=self.config.source_port(validation, probe_num),
            dport=self.config.target_port,
            seq=seq,
            ack=ack,
            flags=flags,
        )
        tcp.checksum = tcp_checksum(ip.src, ip.dst, tcp.pack())
        ip.checksum = ip_checksum(ip.pack())
        return self.ethernet + ip.pack() + tcp.pack()

    def _matching_reply(self, ip_packet: bytes, validation: Sequence[int]) -> TcpHeader | None:
        """Parse a TCP reply whose ports match this scan, else None."""
        try:
            ip = IPv4Header.parse(ip_packet)
        except ValueError:
            return None
        if ip.protocol != IPPROTO_TCP:
            return None
        if ip.header_length + TCP_HEADER_LEN > len(ip_packet):
            return None
        tcp = TcpHeader.parse(ip_packet[ip.header_length :])
        if tcp.sport != self.config.target_port:
            return None
        if not self.config.check_dst_port(tcp.dport, validation):
            return None
        return tcp

    @staticmethod
    def _parse_frame(frame: bytes) -> tuple[IPv4Header, TcpHeader]:
        ip_packet = frame[ETHER_HEADER_LEN:]
        ip = IPv4Header.parse(ip_packet)
        return ip, TcpHeader.parse(ip_packet[ip.header_length :])

    def make_packet(self, src_ip, dst_ip, ttl, validation, probe_num) -> bytes:
        return self._build_frame(
            src_ip, dst_ip, ttl, validation, probe_num, validation[0], 0, TH_SYN
        )

    def validate_packet(self, ip_packet: bytes, validation: Sequence[int]) -> bool:
        tcp = self._matching_reply(ip_packet, validation)
        if tcp is None:
            return False
        sent_seq = validation[0] & _MASK32
        if tcp.flags & TH_RST:
            return tcp.ack in (sent_seq, (sent_seq + 1) & _MASK32)
        return tcp.ack == (sent_seq + 1) & _MASK32

    def process_packet(self, frame: bytes, validation: Sequence[int]) -> FieldSet:
        _, tcp = self._parse_frame(frame)
        fs = FieldSet()
        fs.add_uint64("sport", tcp.sport)
        fs.add_uint64("dport", tcp.dport)
        fs.add_uint64("seqnum", tcp.seq)
        fs.add_uint64("acknum", tcp.ack)
        fs.add_uint64("window", tcp.window)
        if tcp.flags & TH_RST:
            fs.add_string("classification", "rst")
            fs.add_bool("success", False)
        else:
            fs.add_string("classification", "synack")
            fs.add_bool("success", True)
        return fs