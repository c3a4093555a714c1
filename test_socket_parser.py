"""
Tests for socket-table parsing and address handling.

Covers:
- Endpoint splitting (last-colon rule, wildcards, round trip)
- Private/loopback classification and local labels
- Dialect A: Windows and Linux netstat
- Dialect B: lsof rows and bare fragments
- Dialect C: ss with embedded owner annotations
- Tolerance of malformed lines

Run: python -m pytest test_socket_parser.py -v
"""

import unittest

from monitoring.address_utils import (
    split_endpoint, join_endpoint, normalize_ip, is_local_address,
    is_loopback_address, is_wildcard_address, is_local_socket, local_label
)
from monitoring.socket_parser import (
    parse, parse_netstat_windows, parse_netstat_linux, parse_lsof,
    parse_lsof_line, parse_ss, normalize_protocol
)

# ========== Sample command output ==========

WINDOWS_NETSTAT = """
Active Connections

  Proto  Local Address          Foreign Address        State           PID
  TCP    0.0.0.0:135            0.0.0.0:0              LISTENING       1044
  TCP    192.168.1.43:54321     142.251.32.5:443       ESTABLISHED     4120
  TCP    [::1]:49669            [::1]:49670            ESTABLISHED     3456
  UDP    0.0.0.0:500            *:*                                    4448
"""

LINUX_NETSTAT = """Active Internet connections (servers and established)
Proto Recv-Q Send-Q Local Address           Foreign Address         State       PID/Program name
tcp        0      0 0.0.0.0:22              0.0.0.0:*               LISTEN      812/sshd
tcp        0      0 192.168.1.5:53124       142.250.185.110:443     ESTABLISHED 2314/firefox
tcp6       0      0 :::22                   :::*                    LISTEN      812/sshd
udp        0      0 0.0.0.0:68              0.0.0.0:*                           734/dhclient
udp        0      0 0.0.0.0:5353            0.0.0.0:*                           -
udp        0      0 0.0.0.0:5353            0.0.0.0:*                           812/avahi-daemon: r
tcp        0      0 192.168.1.5:22          203.0.113.7:51234       ESTABLISHED 1234/sshd: alice [p
Active UNIX domain sockets (servers and established)
unix  2      [ ACC ]     STREAM     LISTENING     21830    /run/systemd/private
"""

LSOF_OUTPUT = """COMMAND     PID           USER   FD   TYPE             DEVICE SIZE/OFF NODE NAME
firefox    2314          alice   87u  IPv4 0x1a2b3c4d5e6f7a8b      0t0  TCP 192.168.1.100:53124->142.250.185.110:443 (ESTABLISHED)
mDNSRespo   301 _mdnsresponder    7u  IPv4 0x1a2b3c4d5e6f0000      0t0  UDP *:5353
sshd         88           root    3u  IPv6 0x9f8e7d6c5b4a3921      0t0  TCP *:22 (LISTEN)
"""

SS_OUTPUT = """Netid State  Recv-Q Send-Q Local Address:Port  Peer Address:Port Process
tcp   LISTEN 0      128    0.0.0.0:22          0.0.0.0:*         users:(("sshd",pid=812,fd=3))
tcp   ESTAB  0      0      192.168.1.5:53124   142.250.185.110:443 users:(("firefox",pid=2314,fd=87))
udp   UNCONN 0      0      127.0.0.53%lo:53    0.0.0.0:*         users:(("systemd-resolve",pid=600,fd=13))
tcp   LISTEN 0      128    [::]:22             [::]:*            users:(("sshd",pid=812,fd=4))
tcp   ESTAB  0      0      10.0.0.7:41000      93.184.216.34:80
"""


class TestEndpointSplitting(unittest.TestCase):
    """Shared address:port rule"""

    def test_ipv4_endpoint(self):
        self.assertEqual(split_endpoint("192.168.1.100:53124"), ("192.168.1.100", 53124))

    def test_ipv6_splits_on_last_colon(self):
        self.assertEqual(split_endpoint(":::22"), ("::", 22))
        self.assertEqual(split_endpoint("[::1]:631"), ("[::1]", 631))
        self.assertEqual(split_endpoint("fe80::1%en0:5353"), ("fe80::1%en0", 5353))

    def test_wildcards(self):
        self.assertEqual(split_endpoint("*:*"), ("*", 0))
        self.assertEqual(split_endpoint(""), ("*", 0))
        self.assertEqual(split_endpoint(None), ("*", 0))
        self.assertEqual(split_endpoint("*:53"), ("0.0.0.0", 53))
        self.assertEqual(split_endpoint("0.0.0.0:*"), ("0.0.0.0", 0))

    def test_no_colon(self):
        self.assertEqual(split_endpoint("localhost"), ("localhost", 0))

    def test_round_trip_for_sample_endpoints(self):
        """Split-then-join gives back every non-wildcard endpoint in the samples"""
        samples = WINDOWS_NETSTAT + LINUX_NETSTAT + SS_OUTPUT
        endpoints = []
        for line in samples.splitlines():
            for token in line.split():
                if ":" in token and "*" not in token and not token.endswith(":0") \
                        and "/" not in token and (token[0].isdigit() or token[0] in "[:"):
                    endpoints.append(token)
        endpoints += ["192.168.1.100:53124", "142.250.185.110:443"]

        self.assertGreater(len(endpoints), 8)
        for endpoint in endpoints:
            self.assertEqual(join_endpoint(*split_endpoint(endpoint)), endpoint)


class TestAddressClassification(unittest.TestCase):
    """Private / loopback / wildcard checks"""

    def test_local_ranges(self):
        for ip in ["127.0.0.1", "127.8.9.10", "10.0.0.5", "172.16.0.1", "172.31.255.255",
                   "192.168.1.1", "169.254.10.10", "::1", "fe80::1", "fc00::1", "fd00::abcd"]:
            self.assertTrue(is_local_address(ip), ip)

    def test_public_ranges(self):
        for ip in ["8.8.8.8", "142.250.185.110", "172.32.0.1", "2001:4860:4860::8888", "*", "0.0.0.0"]:
            self.assertFalse(is_local_address(ip), ip)

    def test_brackets_and_zones_ignored(self):
        self.assertEqual(normalize_ip("[fe80::1%eth0]"), "fe80::1")
        self.assertTrue(is_local_address("[::1]"))
        self.assertTrue(is_loopback_address("127.0.0.53%lo"))

    def test_ipv4_mapped(self):
        self.assertTrue(is_local_address("::ffff:192.168.1.5"))

    def test_wildcards(self):
        for address in ["*", "0.0.0.0", "::", "[::]", ""]:
            self.assertTrue(is_wildcard_address(address), address)
        self.assertFalse(is_wildcard_address("8.8.8.8"))

    def test_local_labels(self):
        self.assertEqual(local_label("127.0.0.1"), "localhost")
        self.assertEqual(local_label("::1"), "localhost")
        self.assertEqual(local_label("0.0.0.0"), "any")
        self.assertEqual(local_label("::"), "any")
        self.assertEqual(local_label("169.254.3.4"), "link-local")
        self.assertEqual(local_label("fe80::1"), "link-local")
        self.assertEqual(local_label("10.0.0.5"), "local")
        self.assertIsNone(local_label("8.8.8.8"))
        self.assertIsNone(local_label("example.com"))

    def test_local_socket_rule(self):
        """LAN address talking to a public host is not local traffic"""
        self.assertFalse(is_local_socket("192.168.1.100", "142.250.185.110"))
        self.assertTrue(is_local_socket("127.0.0.1", "*"))
        self.assertTrue(is_local_socket("192.168.1.100", "192.168.1.1"))
        self.assertFalse(is_local_socket("0.0.0.0", "*"))


class TestNetstatParsing(unittest.TestCase):
    """Dialect A"""

    def test_windows_rows(self):
        sockets = parse_netstat_windows(WINDOWS_NETSTAT)
        self.assertEqual(len(sockets), 4)

        listener = sockets[0]
        self.assertEqual(listener.protocol, "tcp")
        self.assertEqual(listener.state, "LISTENING")
        self.assertEqual(listener.process_id, 1044)

        established = sockets[1]
        self.assertEqual(established.local_address, "192.168.1.43")
        self.assertEqual(established.local_port, 54321)
        self.assertEqual(established.remote_address, "142.251.32.5")
        self.assertEqual(established.remote_port, 443)
        self.assertEqual(established.process_id, 4120)

        self.assertEqual(sockets[2].local_address, "[::1]")

    def test_windows_udp_without_state(self):
        udp = parse_netstat_windows(WINDOWS_NETSTAT)[3]
        self.assertEqual(udp.protocol, "udp")
        self.assertEqual(udp.remote_address, "*")
        self.assertEqual(udp.remote_port, 0)
        self.assertEqual(udp.state, "UNKNOWN")
        self.assertEqual(udp.process_id, 4448)

    def test_linux_rows(self):
        sockets = parse_netstat_linux(LINUX_NETSTAT)
        self.assertEqual(len(sockets), 7)

        sshd = sockets[0]
        self.assertEqual((sshd.local_address, sshd.local_port), ("0.0.0.0", 22))
        self.assertEqual((sshd.remote_address, sshd.remote_port), ("0.0.0.0", 0))
        self.assertEqual(sshd.state, "LISTEN")
        self.assertEqual((sshd.process_id, sshd.process_name), (812, "sshd"))

        self.assertEqual(sockets[1].state, "ESTABLISHED")
        self.assertEqual(sockets[1].process_name, "firefox")

        tcp6 = sockets[2]
        self.assertEqual(tcp6.protocol, "tcp")
        self.assertEqual(tcp6.local_address, "::")

    def test_linux_udp_rows(self):
        sockets = parse_netstat_linux(LINUX_NETSTAT)
        dhclient, orphan = sockets[3], sockets[4]
        self.assertEqual(dhclient.state, "UNKNOWN")
        self.assertEqual(dhclient.process_id, 734)
        self.assertIsNone(orphan.process_id)
        self.assertIsNone(orphan.process_name)

    def test_linux_program_titles_with_spaces(self):
        sockets = parse_netstat_linux(LINUX_NETSTAT)
        avahi, sshd = sockets[5], sockets[6]
        self.assertEqual(avahi.state, "UNKNOWN")
        self.assertEqual((avahi.process_id, avahi.process_name), (812, "avahi-daemon"))
        self.assertEqual(sshd.state, "ESTABLISHED")
        self.assertEqual((sshd.process_id, sshd.process_name), (1234, "sshd"))
        self.assertEqual((sshd.remote_address, sshd.remote_port), ("203.0.113.7", 51234))


class TestLsofParsing(unittest.TestCase):
    """Dialect B"""

    def test_rows(self):
        sockets = parse_lsof(LSOF_OUTPUT)
        self.assertEqual(len(sockets), 3)

        firefox = sockets[0]
        self.assertEqual(firefox.protocol, "tcp")
        self.assertEqual(firefox.state, "ESTABLISHED")
        self.assertEqual(firefox.process_id, 2314)
        self.assertEqual(firefox.process_name, "firefox")
        self.assertEqual(firefox.user_name, "alice")
        self.assertEqual(firefox.remote_address, "142.250.185.110")

    def test_listening_socket_synthesized(self):
        mdns = parse_lsof(LSOF_OUTPUT)[1]
        self.assertEqual(mdns.protocol, "udp")
        self.assertEqual((mdns.local_address, mdns.local_port), ("0.0.0.0", 5353))
        self.assertEqual((mdns.remote_address, mdns.remote_port), ("*", 0))
        self.assertEqual(mdns.state, "LISTEN")

    def test_bare_fragment(self):
        sock = parse_lsof_line("TCP 192.168.1.100:53124->142.250.185.110:443 (ESTABLISHED)")
        self.assertIsNotNone(sock)
        self.assertEqual(sock.protocol, "tcp")
        self.assertEqual(sock.local_port, 53124)
        self.assertEqual(sock.remote_address, "142.250.185.110")
        self.assertEqual(sock.remote_port, 443)
        self.assertEqual(sock.state, "ESTABLISHED")
        self.assertIsNone(sock.process_id)
        self.assertIsNone(sock.process_name)

    def test_non_network_rows_skipped(self):
        text = "python3 555 bob 4u unix 0xabc 0t0 /tmp/sock\nsomething random\n"
        self.assertEqual(parse_lsof(text), [])


class TestSsParsing(unittest.TestCase):
    """Dialect C"""

    def test_rows_and_owner_annotation(self):
        sockets = parse_ss(SS_OUTPUT)
        self.assertEqual(len(sockets), 5)

        sshd = sockets[0]
        self.assertEqual(sshd.state, "LISTEN")
        self.assertEqual((sshd.process_id, sshd.process_name), (812, "sshd"))

        firefox = sockets[1]
        self.assertEqual(firefox.state, "ESTABLISHED")
        self.assertEqual(firefox.local_port, 53124)
        self.assertEqual((firefox.remote_address, firefox.remote_port), ("142.250.185.110", 443))
        self.assertEqual(firefox.process_id, 2314)

    def test_row_without_owner(self):
        sock = parse_ss(SS_OUTPUT)[4]
        self.assertIsNone(sock.process_id)
        self.assertIsNone(sock.process_name)

    def test_legacy_owner_format(self):
        line = 'tcp LISTEN 0 511 0.0.0.0:80 0.0.0.0:* users:(("nginx",1234,6))'
        sock = parse_ss(line)[0]
        self.assertEqual((sock.process_id, sock.process_name), (1234, "nginx"))

    def test_ipv6_listener(self):
        sock = parse_ss(SS_OUTPUT)[3]
        self.assertEqual((sock.local_address, sock.local_port), ("[::]", 22))
        self.assertEqual(sock.remote_port, 0)


class TestParseDispatch(unittest.TestCase):

    def test_platform_names_map_to_dialects(self):
        self.assertEqual(len(parse("Linux", SS_OUTPUT)), 5)
        self.assertEqual(len(parse("Darwin", LSOF_OUTPUT)), 3)
        self.assertEqual(len(parse("Windows", WINDOWS_NETSTAT)), 4)
        self.assertEqual(len(parse("netstat-linux", LINUX_NETSTAT)), 7)

    def test_unknown_dialect_and_empty_input(self):
        self.assertEqual(parse("BeOS", SS_OUTPUT), [])
        self.assertEqual(parse("ss", ""), [])
        self.assertEqual(parse("ss", None), [])

    def test_garbage_never_raises(self):
        garbage = "\x00\x01 ::::\n tcp\n tcp a b c d e f g\n->->-> (\n" * 3
        for dialect in ["ss", "lsof", "netstat-windows", "netstat-linux"]:
            result = parse(dialect, garbage)
            self.assertIsInstance(result, list)

    def test_protocol_normalization(self):
        self.assertEqual(normalize_protocol("TCP"), "tcp")
        self.assertEqual(normalize_protocol("udp6"), "udp")
        self.assertIsNone(normalize_protocol("raw"))
        self.assertIsNone(normalize_protocol("unix"))


if __name__ == '__main__':
    unittest.main()
