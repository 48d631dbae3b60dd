"""ICMP echo scan that carries the send time so round trips can be measured."""

from __future__ import annotations

import struct
import time
from typing import Callable, Sequence

from .fields import FieldDef, FieldSet
from .icmp_echo import ICMP_PAYLOAD_LEN, IcmpEchoScan, Revalidator

_MASK32 = 0xFFFFFFFF
_TIMESTAMPS = struct.Struct("<II")
_PAYLOAD = struct.Struct("<III")


class IcmpEchoTimeScan(IcmpEchoScan):
    """Echo scan whose payload holds send seconds, microseconds and target."""

    name = "icmp_echo_time"
    packet_length = 62
    pcap_filter = "icmp and icmp[0]!=8"
    pcap_snaplen = 96
    port_args = False
    fields = (
        FieldDef("type", "int", "icmp message type"),
        FieldDef("code", "int", "icmp message sub type code"),
        FieldDef("icmp_id", "int", "icmp id number"),
        FieldDef("seq", "int", "icmp sequence number"),
        FieldDef(
            "sent_timestamp_ts", "int", "timestamp of sent probe in seconds since Epoch"
        ),
        FieldDef("sent_timestamp_us", "int", "microsecond part of sent timestamp"),
        FieldDef("dst-raw", "int", "raw destination IP address of sent probe"),
        FieldDef("classification", "string", "probe module classification"),
        FieldDef("success", "int", "did probe module classify response as success"),
    )

    def __init__(
        self,
        config=None,
        src_mac: bytes | str = bytes(6),
        gw_mac: bytes | str = bytes(6),
        *,
        revalidate: Revalidator | None = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(config, src_mac, gw_mac, revalidate=revalidate)
        self.clock = clock

    def make_packet(self, src_ip, dst_ip, ttl, validation, probe_num) -> bytes:
        """Echo request whose payload records the current time and target."""
        return super().make_packet(src_ip, dst_ip, ttl, validation, probe_num)

    def validate_packet(self, ip_packet: bytes, validation: Sequence[int]) -> bool:
        """Accept echo replies and ICMP errors that answer one of our probes."""
        return super().validate_packet(ip_packet, validation)

    def process_packet(self, frame: bytes, validation: Sequence[int]) -> FieldSet:
        """Extract the ICMP fields and the timing payload of a reply."""
        return super().process_packet(frame, validation)

    def _payload(self, dst_ip: int) -> bytes:
        now = self.clock()
        seconds = int(now)
        micros = min(int((now - seconds) * 1_000_000), 999_999)
        return _TIMESTAMPS.pack(seconds & _MASK32, micros) + dst_ip.to_bytes(4, "big")

    def _add_payload_fields(self, fs: FieldSet, frame: bytes, offset: int) -> None:
        if len(frame) < offset + ICMP_PAYLOAD_LEN:
            raise ValueError("reply too short to hold the timing payload")
        seconds, micros, dst_raw = _PAYLOAD.unpack_from(frame, offset)
        fs.add_uint64("sent_timestamp_ts", seconds)
        fs.add_uint64("sent_timestamp_us", micros)
        fs.add_uint64("dst_raw", dst_raw)

    def _add_outcome(self, fs: FieldSet, classification: str, success: bool) -> None:
        fs.add_string("classification", classification)
        fs.add_uint64("success", int(success))