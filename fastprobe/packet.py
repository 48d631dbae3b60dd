"""Packet headers, checksums and the shared probe-module base."""

from __future__ import annotations

import ipaddress
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Sequence

from .fields import FieldDef, FieldSet

ETHER_HEADER_LEN = 14
ETHERTYPE_IP = 0x0800
IP_HEADER_LEN = 20
TCP_HEADER_LEN = 20
UDP_HEADER_LEN = 8
ICMP_HEADER_LEN = 8
MAX_PACKET_SIZE = 4096

IPPROTO_ICMP = 1
IPPROTO_TCP = 6
IPPROTO_UDP = 17

IP_DEFAULT_ID = 54321
MAX_TTL = 255

TH_FIN = 0x01
TH_SYN = 0x02
TH_RST = 0x04
TH_PUSH = 0x08
TH_ACK = 0x10
TH_URG = 0x20


def _to_ip_int(value: int | str) -> int:
    return int(ipaddress.IPv4Address(value))


def _to_mac(value: bytes | str) -> bytes:
    if isinstance(value, str):
        value = bytes.fromhex(value.replace(":", "").replace("-", ""))
    value = bytes(value)
    if len(value) != 6:
        raise ValueError("a MAC address has six bytes")
    return value


def _hex16(value: int) -> str:
    """Format a 16-bit value the way a '%#04X' conversion does."""
    return "0000" if value == 0 else f"{value:#04X}"


def _format_mac(mac: bytes) -> str:
    return ":".join(f"{b:02x}" for b in mac)


def _describe_ethernet(frame: bytes) -> str:
    return (
        f"eth {{ shost: {_format_mac(frame[6:12])} | "
        f"dhost: {_format_mac(frame[0:6])} }}"
    )


def ip_checksum(data: bytes) -> int:
    """Internet checksum (one's complement of the one's-complement sum)."""
    data = bytes(data)
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def tcp_checksum(src_ip: int | str, dst_ip: int | str, segment: bytes) -> int:
    """Checksum of a TCP segment including the IPv4 pseudo-header."""
    pseudo = struct.pack(
        "!IIBBH", _to_ip_int(src_ip), _to_ip_int(dst_ip), 0, IPPROTO_TCP, len(segment)
    )
    return ip_checksum(pseudo + bytes(segment))


def build_ethernet_header(src_mac: bytes | str, gw_mac: bytes | str) -> bytes:
    """Ethernet II header addressed to the gateway, carrying IPv4."""
    return _to_mac(gw_mac) + _to_mac(src_mac) + struct.pack("!H", ETHERTYPE_IP)


@dataclass
class IPv4Header:
    src: int = 0
    dst: int = 0
    protocol: int = 0
    total_length: int = IP_HEADER_LEN
    ttl: int = MAX_TTL
    identification: int = IP_DEFAULT_ID
    tos: int = 0
    flags_fragment: int = 0
    checksum: int = 0
    version: int = 4
    ihl: int = 5
    options: bytes = b""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!BBHHHBBHII")

    def __post_init__(self) -> None:
        self.src = _to_ip_int(self.src)
        self.dst = _to_ip_int(self.dst)

    @property
    def header_length(self) -> int:
        return self.ihl * 4

    @classmethod
    def parse(cls, data: bytes) -> IPv4Header:
        if len(data) < IP_HEADER_LEN:
            raise ValueError("buffer too short for an IPv4 header")
        (ver_ihl, tos, total, ident, frag, ttl, proto, csum, src, dst) = (
            cls._FORMAT.unpack_from(data)
        )
        ihl = ver_ihl & 0x0F
        if ihl < 5:
            raise ValueError("IPv4 header length below minimum")
        return cls(
            src=src,
            dst=dst,
            protocol=proto,
            total_length=total,
            ttl=ttl,
            identification=ident,
            tos=tos,
            flags_fragment=frag,
            checksum=csum,
            version=ver_ihl >> 4,
            ihl=ihl,
            options=bytes(data[IP_HEADER_LEN : ihl * 4]),
        )

    def pack(self) -> bytes:
        return (
            self._FORMAT.pack(
                (self.version << 4) | self.ihl,
                self.tos,
                self.total_length,
                self.identification,
                self.flags_fragment,
                self.ttl,
                self.protocol,
                self.checksum,
                self.src,
                self.dst,
            )
            + self.options
        )

    def __str__(self) -> str:
        return (
            f"ip {{ saddr: {ipaddress.IPv4Address(self.src)} | "
            f"daddr: {ipaddress.IPv4Address(self.dst)} | "
            f"checksum: {_hex16(self.checksum)} }}"
        )


@dataclass
class TcpHeader:
    sport: int = 0
    dport: int = 0
    seq: int = 0
    ack: int = 0
    flags: int = 0
    window: int = 65535
    checksum: int = 0
    urgent: int = 0
    data_offset: int = 5
    options: bytes = b""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!HHIIBBHHH")

    @classmethod
    def parse(cls, data: bytes) -> TcpHeader:
        if len(data) < TCP_HEADER_LEN:
            raise ValueError("buffer too short for a TCP header")
        sport, dport, seq, ack, off, flags, win, csum, urg = cls._FORMAT.unpack_from(data)
        offset = off >> 4
        return cls(
            sport=sport,
            dport=dport,
            seq=seq,
            ack=ack,
            flags=flags,
            window=win,
            checksum=csum,
            urgent=urg,
            data_offset=offset,
            options=bytes(data[TCP_HEADER_LEN : max(offset * 4, TCP_HEADER_LEN)]),
        )

    def pack(self) -> bytes:
        return (
            self._FORMAT.pack(
                self.sport,
                self.dport,
                self.seq & 0xFFFFFFFF,
                self.ack & 0xFFFFFFFF,
                self.data_offset << 4,
                self.flags,
                self.window,
                self.checksum,
                self.urgent,
            )
            + self.options
        )


@dataclass
class UdpHeader:
    sport: int = 0
    dport: int = 0
    length: int = UDP_HEADER_LEN
    checksum: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!HHHH")

    @classmethod
    def parse(cls, data: bytes) -> UdpHeader:
        if len(data) < UDP_HEADER_LEN:
            raise ValueError("buffer too short for a UDP header")
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        return self._FORMAT.pack(self.sport, self.dport, self.length, self.checksum)


@dataclass
class IcmpHeader:
    type: int = 8
    code: int = 0
    checksum: int = 0
    identifier: int = 0
    sequence: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!BBHHH")

    @classmethod
    def parse(cls, data: bytes) -> IcmpHeader:
        if len(data) < ICMP_HEADER_LEN:
            raise ValueError("buffer too short for an ICMP header")
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.type, self.code, self.checksum, self.identifier, self.sequence
        )


@dataclass(frozen=True)
class ProbeConfig:
    """Scan settings that probe modules consult."""

    source_port_first: int = 32768
    source_port_last: int = 61000
    target_port: int = 0
    packet_streams: int = 1

    def __post_init__(self) -> None:
        if not 0 <= self.source_port_first <= self.source_port_last <= 0xFFFF:
            raise ValueError("invalid source port range")
        if not 0 <= self.target_port <= 0xFFFF:
            raise ValueError("invalid target port")
        if self.packet_streams < 1:
            raise ValueError("at least one probe per target is required")

    @property
    def num_ports(self) -> int:
        return self.source_port_last - self.source_port_first + 1

    def source_port(self, validation: Sequence[int], probe_num: int) -> int:
        """Source port for a probe, chosen from the validation words."""
        return self.source_port_first + (validation[1] + probe_num) % self.num_ports

    def check_dst_port(self, port: int, validation: Sequence[int]) -> bool:
        """Whether a reply's destination port is one this target was probed from."""
        if not self.source_port_first <= port <= self.source_port_last:
            return False
        offset = (port - self.source_port_first - validation[1]) % self.num_ports
        return offset < min(self.packet_streams, self.num_ports)


class ProbeModule(ABC):
    """Base for probe modules: build probes, validate and classify replies."""

    name: ClassVar[str] = ""
    packet_length: ClassVar[int] = 0
    pcap_filter: ClassVar[str] = ""
    pcap_snaplen: ClassVar[int] = 0
    port_args: ClassVar[bool] = False
    fields: ClassVar[tuple[FieldDef, ...]] = ()
    helptext: ClassVar[str] = ""

    def __init__(
        self,
        config: ProbeConfig | None = None,
        src_mac: bytes | str = bytes(6),
        gw_mac: bytes | str = bytes(6),
    ):
        self.config = ProbeConfig() if config is None else config
        self.ethernet = build_ethernet_header(src_mac, gw_mac)

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @abstractmethod
    def make_packet(
        self,
        src_ip: int | str,
        dst_ip: int | str,
        ttl: int,
        validation: Sequence[int],
        probe_num: int,
    ) -> bytes:
        """Return the full Ethernet frame for one probe."""

    @abstractmethod
    def validate_packet(self, ip_packet: bytes, validation: Sequence[int]) -> bool:
        """Whether an IP packet is a reply to one of this scan's probes."""

    @abstractmethod
    def process_packet(self, frame: bytes, validation: Sequence[int]) -> FieldSet:
        """Extract the module's output fields from a validated reply frame."""