# test_hostname_guard.py
"""
HostnameGuard: internal ranges, internal names, metadata endpoints and
service ports are denied; ordinary public hosts pass.
"""

import pytest

from linkguard.config import GuardMode
from linkguard.services.hostname_guard import HostnameGuard, normalize_hostname, parse_ip


class TestDenyList:
    """Default deny-list policy"""

    @pytest.mark.parametrize("host", [
        "127.0.0.1",
        "127.8.9.10",
        "10.0.0.5",
        "172.16.0.1",
        "172.31.255.255",
        "192.168.1.1",
        "169.254.1.1",
        "169.254.169.254",
        "100.64.0.1",
        "100.100.100.200",
        "0.0.0.0",
        "255.255.255.255",
        "::1",
        "[::1]",
        "::",
        "fe80::1",
        "fc00::1",
        "fd12:3456::1",
        "fd00:ec2::254",
        "::ffff:127.0.0.1",
        "::ffff:10.0.0.1",
    ])
    def test_internal_addresses_blocked(self, host):
        assert HostnameGuard().is_blocked(host)

    @pytest.mark.parametrize("host", [
        "localhost",
        "LOCALHOST",
        "localhost.",
        "ip6-localhost",
        "printer.local",
        "db.internal",
        "wiki.corp",
        "nas.lan",
        "router.home",
        "metadata.google.internal",
        "metadata.goog",
    ])
    def test_internal_names_blocked(self, host):
        assert HostnameGuard().is_blocked(host)

    @pytest.mark.parametrize("host", [
        "2130706433",      # 127.0.0.1 as a single integer
        "0x7f.0.0.1",
        "127.1",
        "017700000001",    # octal
    ])
    def test_shorthand_ipv4_forms_blocked(self, host):
        assert HostnameGuard().is_blocked(host)

    @pytest.mark.parametrize("host", [
        "example.com",
        "github.com",
        "www.youtube.com",
        "8.8.8.8",
        "1.1.1.1",
        "2606:4700:4700::1111",
        "localhost-tools.com",
        "internal.example.com",
    ])
    def test_public_hosts_allowed(self, host):
        assert not HostnameGuard().is_blocked(host)

    @pytest.mark.parametrize("port", [22, 25, 3306, 5432, 6379, 27017, 9200, 11211])
    def test_service_ports_blocked(self, port):
        assert HostnameGuard().is_blocked("example.com", port)

    def test_web_ports_allowed(self):
        guard = HostnameGuard()
        assert not guard.is_blocked("example.com", 443)
        assert not guard.is_blocked("example.com", 8080)
        assert not guard.is_blocked("example.com", None)

    def test_garbage_port_blocked(self):
        assert HostnameGuard().is_blocked("example.com", "ssh")

    def test_empty_hostname_blocked(self):
        guard = HostnameGuard()
        assert guard.is_blocked("")
        assert guard.is_blocked(None)

    def test_blocked_url(self):
        guard = HostnameGuard()
        assert guard.is_blocked_url("http://127.0.0.1/admin")
        assert guard.is_blocked_url("http://example.com:6379/")
        assert guard.is_blocked_url("http://[::1]:8080/")
        assert guard.is_blocked_url("not a url")
        assert not guard.is_blocked_url("https://example.com/page")

    def test_resolved_addresses(self):
        guard = HostnameGuard()
        assert guard.is_blocked_address("10.1.2.3")
        assert guard.is_blocked_address("fe80::1%eth0")
        assert guard.is_blocked_address("garbage")
        assert not guard.is_blocked_address("93.184.216.34")


class TestAllowList:
    """Allow-list policy: only enumerated hosts (and subdomains) pass"""

    def test_only_listed_hosts_pass(self):
        guard = HostnameGuard(GuardMode.ALLOW_LIST, ["example.com", ".github.com"])
        assert not guard.is_blocked("example.com")
        assert not guard.is_blocked("www.example.com")
        assert not guard.is_blocked("api.github.com")
        assert guard.is_blocked("evil.com")
        assert guard.is_blocked("notexample.com")

    def test_allow_list_replaces_deny_list(self):
        guard = HostnameGuard(GuardMode.ALLOW_LIST, ["intranet.local"])
        assert not guard.is_blocked("intranet.local")
        assert guard.is_blocked("8.8.8.8")

    def test_empty_allow_list_denies_everything(self):
        guard = HostnameGuard(GuardMode.ALLOW_LIST, [])
        assert guard.is_blocked("example.com")

    def test_service_ports_denied_for_listed_hosts(self):
        guard = HostnameGuard(GuardMode.ALLOW_LIST, ["allowed.example"])
        assert guard.is_blocked("allowed.example", 6379)
        assert guard.is_blocked_url("http://allowed.example:22/")
        assert not guard.is_blocked("allowed.example", 443)


class TestNormalization:

    def test_case_brackets_and_trailing_dot(self):
        assert normalize_hostname("WWW.Example.COM.") == "www.example.com"
        assert normalize_hostname("[::1]") == "::1"

    def test_unicode_hostname_encoded(self):
        assert normalize_hostname("bücher.de") == "xn--bcher-kva.de"

    def test_invalid_idna_rejected(self):
        assert normalize_hostname("a\u200db.com") is None
        assert HostnameGuard().is_blocked("a\u200db.com")

    def test_parse_ip(self):
        assert str(parse_ip("127.1")) == "127.0.0.1"
        assert str(parse_ip("0x7f000001")) == "127.0.0.1"
        assert parse_ip("example.com") is None
