# fastprobe

fastprobe is a pure-Python library of the building blocks for a single-packet network scanner. It builds probe frames, decides whether captured replies answer them, turns the replies into structured records, writes those records out, and reports progress while a scan runs.

## What is in the package

- **`fastprobe.packet`**: IPv4, TCP, UDP and ICMP header classes (`IPv4Header`, `TcpHeader`, `UdpHeader`, `IcmpHeader`), each with `parse` and `pack`. It also provides `ip_checksum`, `tcp_checksum` and `build_ethernet_header`, along with `ProbeConfig` (the source port range, target port and probes per target) and the abstract `ProbeModule` base class.
- **Probe modules**. Each one has `make_packet`, `validate_packet` and `process_packet`:
  - `fastprobe.tcp_synscan.SynScan`: sends TCP SYN probes. A SYN-ACK reply is a success and a RST is a failure. `describe_tcp_packet` prints a summary of a frame.
  - `fastprobe.tcp_synackscan.SynAckScan`: sends TCP SYN-ACK probes. Any matching SYN-ACK or RST counts as a success.
  - `fastprobe.icmp_echo.IcmpEchoScan`: sends ICMP echo requests. It also checks unreachable and time-exceeded errors against the probe they quote, and takes an optional `revalidate` callable. `describe_icmp_packet` prints a summary of a frame.
  - `fastprobe.icmp_echo_time.IcmpEchoTimeScan`: an echo scan whose payload carries the send time and the target address, so you can measure round trips.
  - `fastprobe.dns_probe.DnsScan`: sends DNS queries over UDP and decodes the header, questions, answers, authorities and additionals of each reply. Use `parse_probe_args` for arguments such as `"A,example.com;AAAA,www.example.com"`. `describe_dns_packet` prints a summary of a frame.
- **`fastprobe.dns_wire`**: `QType`, `RCode`, `DnsHeader`, `build_query`, `domain_to_qname`, `read_name` (which follows compression pointers), `parse_question` and `parse_answer`. Malformed data raises `DnsParseError`.
- **`fastprobe.fields`**: `FieldSet`, the ordered record that a probe module returns. It also has the filter expression nodes `Comparison` and `Logical`. `validate_filter` checks a filter against a module's `FieldDef` list and raises `FilterError` on an unknown field or a mismatched type.
- **Output**:
  - `fastprobe.csv_output.CsvOutput` writes a header line followed by one line per record. `format_csv_row` formats a single record.
  - `fastprobe.json_output.JsonOutput` writes one JSON document per line. `fieldset_to_json` and `format_json_record` convert a single record.
  - `fastprobe.output_modules` lists the writers through `output_module_names()` (`csv`, `json`) and `get_output_module(name)`.
- **`fastprobe.monitor`**: `Monitor` turns successive `ScanTotals` readings into a `StatusSnapshot`, which holds rates, hit rates, the estimated time left and the percentage complete. It produces status lines and rows for a CSV status file. `check_limits` raises `MonitorAbort` when the hit rate stays too low or too many sends fail. `Monitor.run` repeats this once per second until sending and receiving are both complete. The module also provides `compute_remaining_time`, `format_number` and `format_duration`.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example: a TCP SYN probe

```python
from fastprobe.packet import ProbeConfig
from fastprobe.tcp_synscan import SynScan

config = ProbeConfig(target_port=80, source_port_first=32768, source_port_last=61000)
scan = SynScan(config)

validation = (0x11223344, 0x55667788, 0x99AABBCC, 0xDDEEFF00)
frame = scan.make_packet("10.0.0.1", "10.0.0.2", 255, validation, 0)

# After capturing a reply frame, strip the 14-byte Ethernet header and check it:
# if scan.validate_packet(reply_frame[14:], validation):
#     record = scan.process_packet(reply_frame, validation)
```

## Example: writing records

```python
from fastprobe.fields import FieldSet
from fastprobe.csv_output import format_csv_row
from fastprobe.json_output import format_json_record

fs = FieldSet()
fs.add_string("classification", "synack")
fs.add_bool("success", True)
fs.add_uint64("sport", 80)

print(format_csv_row(fs))      # synack,1,80
print(format_json_record(fs))  # { "classification": "synack", "success": true, "sport": 80 }
```

## What fastprobe does not do

- It does not open raw sockets, send packets or capture traffic. You send the frames it builds and pass in the frames you capture.
- It has no command-line program. It is a library to use from your own code.
- Its only probe modules are the TCP SYN, TCP SYN-ACK, ICMP echo and DNS modules listed above.
- Its only output writers are CSV and JSON. It has no database or message-queue outputs.
- It does not generate target addresses or validation words. You supply both.