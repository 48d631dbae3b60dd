"""DNS resolver scan: send queries over UDP and decode whatever answers."""

from __future__ import annotations

import ipaddress
from typing import Sequence

from .dns_wire import (
    DEFAULT_DOMAIN,
    DEFAULT_QTYPE,
    DNS_HEADER_LEN,
    DNS_QR_ANSWER,
    DNS_SEND_LEN,
    DnsHeader,
    DnsParseError,
    QType,
    RCode,
    build_query,
    domain_to_qname,
    parse_answer,
    parse_question,
    qtype_from_str,
)
from .fields import FieldDef, FieldSet
from .packet import (
    ETHER_HEADER_LEN,
    IP_HEADER_LEN,
    IPPROTO_ICMP,
    IPPROTO_UDP,
    UDP_HEADER_LEN,
    IPv4Header,
    ProbeConfig,
    ProbeModule,
    UdpHeader,
    _describe_ethernet,
    _hex16,
    ip_checksum,
)

ICMP_UNREACH_HEADER_SIZE = 8
ICMP_UNREACH_PRECEDENCE_CUTOFF = 15
PCAP_SNAPLEN = 1500

_SEPARATOR = "-" * 54

_UNREACH_NAMES = (
    "network-unreach",
    "host-unreach",
    "protocol-unreach",
    "port-unreach",
    "must-fragment",
    "source-route-failed",
    "network-unknown",
    "host-unknown",
    "source-host-isolated",
    "network-admin-prohibited",
    "host-admin-prohibited",
    "network-unreach-tos",
    "host-unreach-tos",
    "communication-admin-prohibited",
    "host-precedence-violation",
    "precedence-cutoff",
)

_DNS_HEADER_FIELDS = (
    "dns_id",
    "dns_rd",
    "dns_tc",
    "dns_aa",
    "dns_opcode",
    "dns_qr",
    "dns_rcode",
    "dns_cd",
    "dns_ad",
    "dns_z",
    "dns_ra",
    "dns_qdcount",
    "dns_ancount",
    "dns_nscount",
    "dns_arcount",
)

_SECTIONS = ("dns_questions", "dns_answers", "dns_authorities", "dns_additionals")

_FORMAT_HINT = 'Format: "A,google.com" or "A,google.com;A,example.com"'


def parse_probe_args(args: str | None, num_questions: int) -> list[tuple[QType, str]]:
    """Split 'TYPE,domain;TYPE,domain' into one (qtype, domain) pair per probe."""
    if num_questions < 1:
        raise ValueError(f"Invalid number of probes for the DNS module: {num_questions}")
    if args is None:
        return [(DEFAULT_QTYPE, DEFAULT_DOMAIN)] * num_questions
    entries = args.split(";")
    questions: list[tuple[QType, str]] = []
    for i in range(num_questions):
        if i >= len(entries) or (i == len(entries) - 1 and entries[i] == ""):
            raise ValueError(
                "More probes than questions configured. Add additional questions."
            )
        has_delimiter = i < len(entries) - 1
        if not has_delimiter and i + 1 != num_questions:
            raise ValueError(f"Invalid probe args. {_FORMAT_HINT}")
        qtype_text, comma, domain = entries[i].partition(",")
        if not comma or not qtype_text or not domain:
            raise ValueError(f"Invalid probe args. {_FORMAT_HINT}")
        questions.append((qtype_from_str(qtype_text), domain))
    if len(entries) > num_questions:
        raise ValueError("More args than probes passed. Add additional probes.")
    return questions


def _wire_id(validation: Sequence[int]) -> int:
    """Transaction id as it reads off the wire; the low validation bits go out little-endian."""
    return int.from_bytes((validation[2] & 0xFFFF).to_bytes(2, "little"), "big")


def describe_dns_packet(frame: bytes) -> str:
    """Human-readable summary of a DNS probe frame."""
    ip_packet = bytes(frame[ETHER_HEADER_LEN:])
    ip = IPv4Header.parse(ip_packet)
    udp = UdpHeader.parse(ip_packet[ip.header_length :])
    return (
        f"{_SEPARATOR}\n"
        f"dns {{ source: {udp.sport} | dest: {udp.dport} | "
        f"checksum: {_hex16(udp.checksum)} }}\n"
        f"{ip}\n{_describe_ethernet(frame)}\n{_SEPARATOR}\n"
    )


def _unreach_name(code: int) -> str:
    if code <= ICMP_UNREACH_PRECEDENCE_CUTOFF:
        return _UNREACH_NAMES[code]
    return "unknown"


def _add_empty_dns(fs: FieldSet) -> None:
    for name in _DNS_HEADER_FIELDS:
        fs.add_null(name)
    for name in _SECTIONS:
        fs.add_repeated(name, FieldSet(repeated=True))
    fs.add_uint64("dns_unconsumed_bytes", 0)
    fs.add_uint64("dns_parse_err", 1)


def _parse_section(parser, payload: bytes, offset: int, end: int, count: int, err: bool):
    records = FieldSet(repeated=True)
    for _ in range(count):
        if err:
            break
        try:
            record, offset = parser(payload, offset, end)
        except DnsParseError:
            err = True
        else:
            records.add_fieldset(None, record)
    return records, offset, err


class DnsScan(ProbeModule):
    """Send DNS queries; a reply echoing our id and question is success.

    ``probe_args`` takes the form 'TYPE,domain', or several such entries
    separated by ';' with one entry per probe sent to each target.
    """

    name = "dns"
    packet_length = DNS_SEND_LEN + UDP_HEADER_LEN
    pcap_filter = "udp || icmp"
    pcap_snaplen = PCAP_SNAPLEN
    port_args = True
    fields = (
        FieldDef("classification", "string", "packet protocol"),
        FieldDef("success", "bool", "Are the validation bits and question correct"),
        FieldDef("app_success", "bool", "Is the RA bit set with no error code?"),
        FieldDef("sport", "int", "UDP source port"),
        FieldDef("dport", "int", "UDP destination port"),
        FieldDef("udp_len", "int", "UDP packet lenght"),
        FieldDef("icmp_responder", "string", "Source IP of ICMP_UNREACH message"),
        FieldDef("icmp_type", "int", "icmp message type"),
        FieldDef("icmp_code", "int", "icmp message sub type code"),
        FieldDef(
            "icmp_unreach_str",
            "string",
            "for icmp_unreach responses, the string version of icmp_code "
            "(e.g. network-unreach)",
        ),
        FieldDef("dns_id", "int", "DNS transaction ID"),
        FieldDef("dns_rd", "int", "DNS recursion desired"),
        FieldDef("dns_tc", "int", "DNS packet truncated"),
        FieldDef("dns_aa", "int", "DNS authoritative answer"),
        FieldDef("dns_opcode", "int", "DNS opcode (query type)"),
        FieldDef("dns_qr", "int", "DNS query(0) or response (1)"),
        FieldDef("dns_rcode", "int", "DNS response code"),
        FieldDef("dns_cd", "int", "DNS checking disabled"),
        FieldDef("dns_ad", "int", "DNS authenticated data"),
        FieldDef("dns_z", "int", "DNS reserved"),
        FieldDef("dns_ra", "int", "DNS recursion available"),
        FieldDef("dns_qdcount", "int", "DNS number questions"),
        FieldDef("dns_ancount", "int", "DNS number answer RR's"),
        FieldDef("dns_nscount", "int", "DNS number NS RR's in authority section"),
        FieldDef("dns_arcount", "int", "DNS number additional RR's"),
        FieldDef("dns_questions", "repeated", "DNS question list"),
        FieldDef("dns_answers", "repeated", "DNS answer list"),
        FieldDef("dns_authorities", "repeated", "DNS authority list"),
        FieldDef("dns_additionals", "repeated", "DNS additional list"),
        FieldDef("dns_parse_err", "int", "Problem parsing the DNS response"),
        FieldDef(
            "dns_unconsumed_bytes", "int", "Bytes left over when parsing the DNS response"
        ),
        FieldDef("raw_data", "binary", "UDP payload"),
    )
    helptext = (
        "This module sends out DNS queries and parses basic responses. "
        "By default, the module will perform an A record lookup for "
        "google.com. You can specify other queries using the --probe-args "
        "argument in the form: 'type,query', e.g. 'A,google.com'. The module "
        "supports sending the the following types: of queries: A, NS, CNAME, SOA, "
        "PTR, MX, TXT, AAAA, RRSIG, and ALL. The module will accept and attempt "
        "to parse all DNS responses. There is currently support for parsing out "
        "full data from A, NS, CNAME, MX, TXT, and AAAA. Any other types will be "
        "output in raw form."
    )

    def __init__(
        self,
        config: ProbeConfig | None = None,
        src_mac: bytes | str = bytes(6),
        gw_mac: bytes | str = bytes(6),
        *,
        probe_args: str | None = None,
    ):
        super().__init__(config, src_mac, gw_mac)
        self.questions = parse_probe_args(probe_args, self.config.packet_streams)
        self.qnames = [domain_to_qname(domain) for _, domain in self.questions]
        self.queries = [build_query(domain, qtype) for qtype, domain in self.questions]

    def make_packet(self, src_ip, dst_ip, ttl, validation, probe_num) -> bytes:
        index = probe_num if len(self.queries) > 1 else 0
        query = self.queries[index]
        dns = _wire_id(validation).to_bytes(2, "big") + query[2:]
        udp = UdpHeader(
            sport=self.config.source_port(validation, probe_num),
            dport=self.config.target_port,
            length=UDP_HEADER_LEN + len(dns),
        )
        ip = IPv4Header(
            src=src_ip,
            dst=dst_ip,
            ttl=ttl,
            protocol=IPPROTO_UDP,
            total_length=IP_HEADER_LEN + UDP_HEADER_LEN + len(dns),
        )
        ip.checksum = ip_checksum(ip.pack())
        return self.ethernet + ip.pack() + udp.pack() + dns

    def validate_packet(self, ip_packet: bytes, validation: Sequence[int]) -> bool:
        ip_packet = bytes(ip_packet)
        length = len(ip_packet)
        try:
            ip = IPv4Header.parse(ip_packet)
        except ValueError:
            return False
        hl = ip.header_length
        if ip.protocol == IPPROTO_UDP:
            if hl + UDP_HEADER_LEN > length:
                return False
            udp = UdpHeader.parse(ip_packet[hl:])
            if not self.config.check_dst_port(udp.dport, validation):
                return False
            sport = udp.sport
        elif ip.protocol == IPPROTO_ICMP:
            min_len = hl + ICMP_UNREACH_HEADER_SIZE + IP_HEADER_LEN + UDP_HEADER_LEN
            if length < min_len:
                return False
            inner_start = hl + ICMP_UNREACH_HEADER_SIZE
            try:
                inner = IPv4Header.parse(ip_packet[inner_start:])
            except ValueError:
                return False
            if length < inner.header_length - IP_HEADER_LEN + min_len:
                return False
            if inner.protocol != IPPROTO_UDP:
                return False
            udp = UdpHeader.parse(ip_packet[inner_start + inner.header_length :])
            if not self.config.check_dst_port(udp.sport, validation):
                return False
            sport = udp.dport
        else:
            return False
        if sport != self.config.target_port:
            return False
        if not any(udp.length >= len(query) for query in self.queries):
            return False
        return length >= udp.length

    def _matches_question(self, dns: bytes, validation: Sequence[int]) -> bool:
        expected_id = _wire_id(validation)
        for query, qname in zip(self.queries, self.qnames):
            if len(dns) < 2 or int.from_bytes(dns[:2], "big") != expected_id:
                continue
            if dns[DNS_HEADER_LEN : DNS_HEADER_LEN + len(qname)] == qname:
                return True
        return False

    def process_packet(self, frame: bytes, validation: Sequence[int]) -> FieldSet:
        frame = bytes(frame)
        ip = IPv4Header.parse(frame[ETHER_HEADER_LEN:])
        transport = ETHER_HEADER_LEN + ip.header_length
        fs = FieldSet()
        if ip.protocol == IPPROTO_UDP:
            self._process_udp(fs, frame, transport, validation)
        elif ip.protocol == IPPROTO_ICMP:
            self._process_icmp(fs, frame, ip, transport)
        else:
            raise ValueError("reply is neither UDP nor ICMP")
        return fs

    def _process_udp(
        self, fs: FieldSet, frame: bytes, start: int, validation: Sequence[int]
    ) -> None:
        udp = UdpHeader.parse(frame[start:])
        dns_start = start + UDP_HEADER_LEN
        candidates = [q for q in self.queries if udp.length >= len(q)]
        if not candidates:
            raise ValueError("reply shorter than every query sent")
        dns_tail = frame[dns_start:]
        is_valid = any(
            udp.length >= len(query) and self._matches_question(dns_tail, validation)
            for query in self.queries
        )
        header = DnsHeader.parse(dns_tail) if is_valid else None

        fs.add_string("classification", "dns")
        fs.add_bool("success", is_valid)
        fs.add_bool(
            "app_success",
            header is not None
            and header.qr == DNS_QR_ANSWER
            and header.rcode == RCode.NOERR,
        )
        fs.add_uint64("sport", udp.sport)
        fs.add_uint64("dport", udp.dport)
        fs.add_uint64("udp_len", udp.length)
        for name in ("icmp_responder", "icmp_type", "icmp_code", "icmp_unreach_str"):
            fs.add_null(name)

        if header is None:
            _add_empty_dns(fs)
        else:
            for name in _DNS_HEADER_FIELDS:
                fs.add_uint64(name, getattr(header, name[len("dns_") :]))
            payload = frame[dns_start : dns_start + max(udp.length - UDP_HEADER_LEN, 0)]
            end = len(payload)
            offset = DNS_HEADER_LEN
            err = False
            counts = (header.qdcount, header.ancount, header.nscount, header.arcount)
            parsers = (parse_question, parse_answer, parse_answer, parse_answer)
            for section, parser, count in zip(_SECTIONS, parsers, counts):
                records, offset, err = _parse_section(
                    parser, payload, offset, end, count, err
                )
                fs.add_repeated(section, records)
            unconsumed = max(end - offset, 0)
            fs.add_uint64("dns_unconsumed_bytes", unconsumed)
            if unconsumed:
                err = True
            fs.add_uint64("dns_parse_err", int(err))
        fs.add_binary("raw_data", frame[dns_start : start + udp.length])

    def _process_icmp(
        self, fs: FieldSet, frame: bytes, ip: IPv4Header, start: int
    ) -> None:
        icmp_type, icmp_code = frame[start], frame[start + 1]
        inner_start = start + ICMP_UNREACH_HEADER_SIZE
        inner = IPv4Header.parse(frame[inner_start:])
        udp = UdpHeader.parse(frame[inner_start + inner.header_length :])
        fs.add_string("classification", "icmp-unreach")
        fs.add_bool("success", False)
        fs.add_bool("app_success", False)
        fs.add_uint64("sport", udp.sport)
        fs.add_uint64("dport", udp.dport)
        fs.add_uint64("udp_len", udp.length)
        fs.add_string("icmp_responder", str(ipaddress.IPv4Address(ip.src)))
        fs.add_uint64("icmp_type", icmp_type)
        fs.add_uint64("icmp_code", icmp_code)
        fs.add_string("icmp_unreach_str", _unreach_name(icmp_code))
        _add_empty_dns(fs)
        fs.add_binary("raw_data", frame)