"""TCP SYN-ACK scan: any matching SYN-ACK or RST reply is a success."""

from __future__ import annotations

from typing import Sequence

from .fields import FieldDef, FieldSet
from .packet import TH_ACK, TH_RST, TH_SYN
from .tcp_synscan import SynScan

_MASK32 = 0xFFFFFFFF


class SynAckScan(SynScan):
    name = "tcp_synackscan"
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
        FieldDef("ipid", "int", "IP Identification"),
        FieldDef("classification", "string", "packet classification"),
        FieldDef("success", "bool", "is response considered success"),
    )
    helptext = (
        "Probe module that sends a TCP SYNACK packet to a specific port. Possible "
        "classifications are: synack and rst. A SYN-ACK packet is considered a "
        "failure and a reset packet is considered a success."
    )

    def make_packet(self, src_ip, dst_ip, ttl, validation, probe_num) -> bytes:
        return self._build_frame(
            src_ip,
            dst_ip,
            ttl,
            validation,
            probe_num,
            validation[0],
            validation[2],
            TH_SYN | TH_ACK,
        )

    def validate_packet(self, ip_packet: bytes, validation: Sequence[int]) -> bool:
        tcp = self._matching_reply(ip_packet, validation)
        if tcp is None:
            return False
        expected_ack = (validation[0] + 1) & _MASK32
        if tcp.flags & TH_RST:
            sent_ack = validation[2] & _MASK32
            return (
                tcp.ack == expected_ack
                or tcp.seq == sent_ack
                or tcp.seq == (sent_ack + 1) & _MASK32
            )
        return tcp.ack == expected_ack

    def process_packet(self, frame: bytes, validation: Sequence[int]) -> FieldSet:
        ip, tcp = self._parse_frame(frame)
        fs = FieldSet()
        fs.add_uint64("sport", tcp.sport)
        fs.add_uint64("dport", tcp.dport)
        fs.add_uint64("seqnum", tcp.seq)
        fs.add_uint64("acknum", tcp.ack)
        fs.add_uint64("window", tcp.window)
        fs.add_uint64("ipid", ip.identification)
        fs.add_string("classification", "rst" if tcp.flags & TH_RST else "synack")
        fs.add_bool("success", True)
        return fs