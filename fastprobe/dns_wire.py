"""DNS wire format: query construction and response record parsing."""

from __future__ import annotations

import ipaddress
import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar

from .fields import FieldSet

log = logging.getLogger(__name__)

DNS_SEND_LEN = 512
DNS_HEADER_LEN = 12
QUESTION_TAIL_LEN = 4
ANSWER_TAIL_LEN = 10
MAX_QTYPE = 255
BAD_QTYPE_STR = "BAD QTYPE"
MAX_LABEL_RECURSION = 10
# Room for a decoded name, not counting the terminator.
MAX_NAME_LENGTH = 511
QCLASS_IN = 1
DNS_QR_ANSWER = 1

_QUESTION_TAIL = struct.Struct("!HH")
_ANSWER_TAIL = struct.Struct("!HHIH")


class QType(IntEnum):
    """Query types the scanner can send and name."""

    A = 1
    NS = 2
    CNAME = 5
    SOA = 6
    PTR = 12
    MX = 15
    TXT = 16
    AAAA = 28
    RRSIG = 46
    ALL = 255


class RCode(IntEnum):
    """DNS response codes."""

    NOERR = 0
    FORMATERR = 1
    SRVFAILURE = 2
    NXDOMAIN = 3
    QTYPENOTIMPL = 4
    QRYREFUSED = 5


DEFAULT_DOMAIN = "www.google.com"
DEFAULT_QTYPE = QType.A


class DnsParseError(ValueError):
    """Raised when a DNS message cannot be decoded."""


def qtype_from_str(text: str) -> QType:
    """Map a query type name such as 'AAAA' to its code."""
    try:
        return QType[text]
    except KeyError:
        raise ValueError(f"Incorrect qtype supplied. {text}") from None


def qtype_name(code: int) -> str:
    """Name of a query type, or 'BAD QTYPE' for one that is not supported."""
    try:
        return QType(code).name
    except ValueError:
        return BAD_QTYPE_STR


def domain_to_qname(domain: str) -> bytes:
    """Encode a dotted domain as length-prefixed labels ending in a zero byte."""
    encoded = bytearray()
    for label in domain.encode("utf-8").split(b"."):
        if len(label) > 0xFF:
            raise ValueError(f"label too long in domain {domain!r}")
        encoded.append(len(label))
        encoded += label
    encoded.append(0)
    return bytes(encoded)


@dataclass
class DnsHeader:
    """Fixed 12-byte DNS header; ``id`` is kept as it appears on the wire."""

    id: int = 0
    rd: int = 0
    tc: int = 0
    aa: int = 0
    opcode: int = 0
    qr: int = 0
    rcode: int = 0
    cd: int = 0
    ad: int = 0
    z: int = 0
    ra: int = 0
    qdcount: int = 0
    ancount: int = 0
    nscount: int = 0
    arcount: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("!HBBHHHH")

    @classmethod
    def parse(cls, data: bytes) -> DnsHeader:
        if len(data) < DNS_HEADER_LEN:
            raise DnsParseError("buffer too short for a DNS header")
        ident, b2, b3, qd, an, ns, ar = cls._FORMAT.unpack_from(data)
        return cls(
            id=ident,
            rd=b2 & 0x01,
            tc=(b2 >> 1) & 0x01,
            aa=(b2 >> 2) & 0x01,
            opcode=(b2 >> 3) & 0x0F,
            qr=(b2 >> 7) & 0x01,
            rcode=b3 & 0x0F,
            cd=(b3 >> 4) & 0x01,
            ad=(b3 >> 5) & 0x01,
            z=(b3 >> 6) & 0x01,
            ra=(b3 >> 7) & 0x01,
            qdcount=qd,
            ancount=an,
            nscount=ns,
            arcount=ar,
        )

    def pack(self) -> bytes:
        b2 = (
            (self.rd & 1)
            | (self.tc & 1) << 1
            | (self.aa & 1) << 2
            | (self.opcode & 0x0F) << 3
            | (self.qr & 1) << 7
        )
        b3 = (
            (self.rcode & 0x0F)
            | (self.cd & 1) << 4
            | (self.ad & 1) << 5
            | (self.z & 1) << 6
            | (self.ra & 1) << 7
        )
        return self._FORMAT.pack(
            self.id & 0xFFFF,
            b2,
            b3,
            self.qdcount,
            self.ancount,
            self.nscount,
            self.arcount,
        )


def build_query(domain: str, qtype: int) -> bytes:
    """A recursive query with one question of class IN; the id is left zero."""
    qname = domain_to_qname(domain)
    total = DNS_HEADER_LEN + len(qname) + QUESTION_TAIL_LEN
    if total > DNS_SEND_LEN:
        raise ValueError(f"DNS packet bigger ({total}) than our limit ({DNS_SEND_LEN})")
    header = DnsHeader(rd=1, qdcount=1).pack()
    return header + qname + _QUESTION_TAIL.pack(int(qtype), QCLASS_IN)


def _name_helper(
    payload: bytes, pos: int, end: int, level: int, name: bytearray, room: int
) -> tuple[int, int]:
    """Decode labels at ``pos``; return bytes consumed there and room left."""
    if end - pos <= 0 or room == 0 or not payload:
        raise DnsParseError("empty name field")
    if level > MAX_LABEL_RECURSION:
        raise DnsParseError("name compression nested too deeply")
    consumed = 0
    while pos < end:
        byte = payload[pos]
        if byte >= 0xC0:
            if end - pos < 2:
                raise DnsParseError("compression pointer without offset")
            target = ((byte & 0x03) << 8) | payload[pos + 1]
            if target >= len(payload):
                raise DnsParseError("compression pointer beyond payload")
            if level > 0 or consumed > 0:
                if room < 1:
                    log.warning("Exceeded static name field allocation.")
                    raise DnsParseError("name too long")
                name += b"."
                room -= 1
            _, room = _name_helper(payload, target, len(payload), level + 1, name, room)
            return consumed + 2, room
        if byte == 0:
            return consumed + 1, room
        pos += 1
        if byte + 1 > end - pos:
            raise DnsParseError("not enough data for label")
        if consumed > 0:
            if room < 1:
                log.warning("Exceeded static name field allocation.")
                raise DnsParseError("name too long")
            name += b"."
            room -= 1
        consumed += 1
        if byte > room:
            log.warning("Exceeded static name field allocation.")
            raise DnsParseError("name too long")
        name += payload[pos : pos + byte]
        room -= byte
        pos += byte
        consumed += byte
    raise DnsParseError("name runs past the end of its field")


def read_name(payload: bytes, offset: int, end: int) -> tuple[str, int]:
    """Decode a possibly compressed name at ``offset`` in a DNS message.

    ``end`` bounds the field being read; compression pointers may refer to
    anywhere in ``payload``.  Returns the name and the bytes consumed at
    ``offset``.
    """
    payload = bytes(payload)
    end = min(end, len(payload))
    name = bytearray()
    consumed, _ = _name_helper(payload, offset, end, 0, name, MAX_NAME_LENGTH)
    return name.decode("latin-1"), consumed


def parse_question(payload: bytes, offset: int, end: int) -> tuple[FieldSet, int]:
    """Decode one question entry; return its fields and the next offset."""
    payload = bytes(payload)
    end = min(end, len(payload))
    name, consumed = read_name(payload, offset, end)
    if consumed + QUESTION_TAIL_LEN > end - offset:
        raise DnsParseError("question truncated")
    qtype, qclass = _QUESTION_TAIL.unpack_from(payload, offset + consumed)
    fs = FieldSet()
    fs.add_string("name", name)
    fs.add_uint64("qtype", qtype)
    fs.add_string("qtype_str", qtype_name(qtype))
    fs.add_uint64("qclass", qclass)
    return fs, offset + consumed + QUESTION_TAIL_LEN


def _unparsed(fs: FieldSet, rdata: bytes) -> None:
    fs.add_uint64("rdata_is_parsed", 0)
    fs.add_binary("rdata", rdata)


def _parsed(fs: FieldSet, text: str) -> None:
    fs.add_uint64("rdata_is_parsed", 1)
    fs.add_string("rdata", text)


def _add_rdata(
    fs: FieldSet, rtype: int, payload: bytes, start: int, rdlength: int
) -> None:
    rdata = payload[start : start + rdlength]
    if rtype in (QType.NS, QType.CNAME):
        try:
            name, _ = read_name(payload, start, start + rdlength)
        except DnsParseError:
            _unparsed(fs, rdata)
        else:
            _parsed(fs, name)
    elif rtype == QType.MX:
        if rdlength <= 4:
            _unparsed(fs, rdata)
            return
        try:
            name, _ = read_name(payload, start + 2, start + rdlength)
        except DnsParseError:
            _unparsed(fs, rdata)
        else:
            preference = int.from_bytes(rdata[:2], "big")
            _parsed(fs, f"{preference} {name}")
    elif rtype == QType.TXT:
        if rdlength >= 1 and rdlength - 1 != rdata[0]:
            log.warning("TXT record with wrong TXT len. Not processing.")
            _unparsed(fs, rdata)
        else:
            _parsed(fs, rdata[1:].decode("latin-1"))
    elif rtype == QType.A:
        if rdlength != 4:
            log.warning("A record with IP of length %d. Not processing.", rdlength)
            _unparsed(fs, rdata)
        else:
            _parsed(fs, str(ipaddress.IPv4Address(rdata)))
    elif rtype == QType.AAAA:
        if rdlength != 16:
            log.warning("AAAA record with IP of length %d. Not processing.", rdlength)
            _unparsed(fs, rdata)
        else:
            _parsed(fs, str(ipaddress.IPv6Address(rdata)))
    else:
        _unparsed(fs, rdata)


def parse_answer(payload: bytes, offset: int, end: int) -> tuple[FieldSet, int]:
    """Decode one resource record; return its fields and the next offset."""
    payload = bytes(payload)
    end = min(end, len(payload))
    available = end - offset
    name, consumed = read_name(payload, offset, end)
    if consumed + ANSWER_TAIL_LEN > available:
        raise DnsParseError("resource record truncated")
    rtype, rclass, ttl, rdlength = _ANSWER_TAIL.unpack_from(payload, offset + consumed)
    if rdlength + consumed + ANSWER_TAIL_LEN > available:
        raise DnsParseError("resource record data truncated")
    rdata_start = offset + consumed + ANSWER_TAIL_LEN
    fs = FieldSet()
    fs.add_string("name", name)
    fs.add_uint64("type", rtype)
    fs.add_string("type_str", qtype_name(rtype))
    fs.add_uint64("class", rclass)
    fs.add_uint64("ttl", ttl)
    fs.add_uint64("rdlength", rdlength)
    _add_rdata(fs, rtype, payload, rdata_start, rdlength)
    return fs, rdata_start + rdlength