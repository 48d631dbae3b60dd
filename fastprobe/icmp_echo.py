"""ICMP echo request (ping) scan."""

from __future__ import annotations

from typing import Callable, Sequence

from .fields import FieldDef, FieldSet
from .packet import (
    ETHER_HEADER_LEN,
    ICMP_HEADER_LEN,
    IP_HEADER_LEN,
    IPPROTO_ICMP,
    IcmpHeader,
    IPv4Header,
    ProbeModule,
    _describe_ethernet,
    _hex16,
    ip_checksum,
)

ICMP_ECHOREPLY = 0
ICMP_UNREACH = 3
ICMP_SOURCEQUENCH = 4
ICMP_REDIRECT = 5
ICMP_ECHO = 8
ICMP_TIMXCEED = 11

ICMP_SMALLEST_SIZE = 5
ICMP_TIMXCEED_UNREACH_HEADER_SIZE = 8
# Bytes following the 8-byte echo header; the echo message is 20 bytes long.
ICMP_PAYLOAD_LEN = 12
# Bytes of the original datagram that an error message must quote.
_QUOTED_TRANSPORT_LEN = 8

_SEPARATOR = "-" * 54

_CLASSIFICATIONS = {
    ICMP_ECHOREPLY: "echoreply",
    ICMP_UNREACH: "unreach",
    ICMP_SOURCEQUENCH: "sourcequench",
    ICMP_REDIRECT: "redirect",
    ICMP_TIMXCEED: "timxceed",
}

Revalidator = Callable[[int, int], Sequence[int]]


def _swap16(value: int) -> int:
    """Swap the two bytes of a 16-bit value."""
    return int.from_bytes((value & 0xFFFF).to_bytes(2, "little"), "big")


def describe_icmp_packet(frame: bytes) -> str:
    """Human-readable summary of an ICMP probe frame."""
    ip_packet = frame[ETHER_HEADER_LEN:]
    ip = IPv4Header.parse(ip_packet)
    icmp = IcmpHeader.parse(ip_packet[ip.header_length :])
    return (
        f"icmp {{ type: {icmp.type} | code: {icmp.code} | "
        f"checksum: {_hex16(icmp.checksum)} | id: {icmp.identifier} | "
        f"seq: {icmp.sequence} }}\n"
        f"{ip}\n{_describe_ethernet(frame)}\n{_SEPARATOR}\n"
    )


class IcmpEchoScan(ProbeModule):
    """Send echo requests; an echo reply is success.

    The identifier and sequence fields carry the low 16 bits of the second
    and third validation words, stored in little-endian byte order.  For
    destination-unreachable and time-exceeded replies the quoted original
    probe is checked instead; ``revalidate(our_address, target_address)``,
    when given, supplies the validation words for the quoted target.
    """

    name = "icmp_echoscan"
    packet_length = 62
    pcap_filter = "icmp and icmp[0]!=8"
    pcap_snaplen = 96
    port_args = False
    fields = (
        FieldDef("type", "int", "icmp message type"),
        FieldDef("code", "int", "icmp message sub type code"),
        FieldDef("icmp-id", "int", "icmp id number"),
        FieldDef("seq", "int", "icmp sequence number"),
        FieldDef("classification", "string", "probe module classification"),
        FieldDef("success", "bool", "did probe module classify response as success"),
    )

    def __init__(
        self,
        config=None,
        src_mac: bytes | str = bytes(6),
        gw_mac: bytes | str = bytes(6),
        *,
        revalidate: Revalidator | None = None,
    ):
        super().__init__(config, src_mac, gw_mac)
        self.revalidate = revalidate

    def _payload(self, dst_ip: int) -> bytes:
        return bytes(ICMP_PAYLOAD_LEN)

    def make_packet(self, src_ip, dst_ip, ttl, validation, probe_num) -> bytes:
        ip = IPv4Header(
            src=src_ip,
            dst=dst_ip,
            ttl=ttl,
            protocol=IPPROTO_ICMP,
            total_length=IP_HEADER_LEN + ICMP_HEADER_LEN + ICMP_PAYLOAD_LEN,
        )
        icmp = IcmpHeader(
            type=ICMP_ECHO,
            code=0,
            identifier=_swap16(validation[1]),
            sequence=_swap16(validation[2]),
        )
        payload = self._payload(ip.dst)
        icmp.checksum = ip_checksum(icmp.pack() + payload)
        ip.checksum = ip_checksum(ip.pack())
        frame = self.ethernet + ip.pack() + icmp.pack() + payload
        return frame.ljust(self.packet_length, b"\x00")

    def validate_packet(self, ip_packet: bytes, validation: Sequence[int]) -> bool:
        ip_packet = bytes(ip_packet)
        length = len(ip_packet)
        try:
            ip = IPv4Header.parse(ip_packet)
        except ValueError:
            return False
        if ip.protocol != IPPROTO_ICMP:
            return False
        hl = ip.header_length
        if hl + ICMP_SMALLEST_SIZE > length:
            return False
        try:
            icmp = IcmpHeader.parse(ip_packet[hl:])
        except ValueError:
            return False
        identifier, sequence = icmp.identifier, icmp.sequence
        if icmp.type in (ICMP_TIMXCEED, ICMP_UNREACH):
            inner_start = hl + ICMP_TIMXCEED_UNREACH_HEADER_SIZE
            if inner_start + IP_HEADER_LEN > length:
                return False
            try:
                inner = IPv4Header.parse(ip_packet[inner_start:])
            except ValueError:
                return False
            quoted = inner_start + inner.header_length
            if quoted + _QUOTED_TRANSPORT_LEN > length:
                return False
            inner_icmp = IcmpHeader.parse(ip_packet[quoted:])
            identifier, sequence = inner_icmp.identifier, inner_icmp.sequence
            if self.revalidate is not None:
                validation = self.revalidate(ip.dst, inner.dst)
        if _swap16(identifier) != validation[1] & 0xFFFF:
            return False
        return _swap16(sequence) == validation[2] & 0xFFFF

    @staticmethod
    def _parse_reply(frame: bytes) -> tuple[IcmpHeader, int]:
        ip = IPv4Header.parse(frame[ETHER_HEADER_LEN:])
        offset = ETHER_HEADER_LEN + ip.header_length
        return IcmpHeader.parse(frame[offset:]), offset + ICMP_HEADER_LEN

    def _add_payload_fields(self, fs: FieldSet, frame: bytes, offset: int) -> None:
        """Hook for modules that read data echoed back in the reply."""

    def _add_outcome(self, fs: FieldSet, classification: str, success: bool) -> None:
        fs.add_string("classification", classification)
        if success:
            fs.add_uint64("success", 1)
        else:
            fs.add_bool("success", False)

    def process_packet(self, frame: bytes, validation: Sequence[int]) -> FieldSet:
        frame = bytes(frame)
        icmp, payload_offset = self._parse_reply(frame)
        fs = FieldSet()
        fs.add_uint64("type", icmp.type)
        fs.add_uint64("code", icmp.code)
        fs.add_uint64("icmp_id", icmp.identifier)
        fs.add_uint64("seq", icmp.sequence)
        self._add_payload_fields(fs, frame, payload_offset)
        self._add_outcome(
            fs,
            _CLASSIFICATIONS.get(icmp.type, "other"),
            icmp.type == ICMP_ECHOREPLY,
        )
        return fs