"""Tests for remote-address entry parsing, coverage and subtraction."""

import pytest

from bastion.firewall.addresses import covers, ipv4_span, subtract, validate_entry


class TestSpan:
    def test_host(self):
        assert ipv4_span("0.0.0.1") == (1, 1)

    def test_mask_and_prefix_subnets(self):
        assert ipv4_span("203.0.113.0/255.255.255.0") == ipv4_span("203.0.113.0/24")

    def test_range(self):
        first, last = ipv4_span("192.0.2.10-192.0.2.11")
        assert last - first == 1

    def test_non_ipv4_forms(self):
        assert ipv4_span("LocalSubnet") is None
        assert ipv4_span("2001:db8::/32") is None
        assert ipv4_span("192.0.2.11-192.0.2.10") is None


class TestValidateEntry:
    @pytest.mark.parametrize("entry", [
        "203.0.113.1",
        "203.0.113.0/255.255.255.0",
        "203.0.113.0/24",
        "192.0.2.10-192.0.2.11",
        "LocalSubnet",
        "2001:db8::1",
        "2001:db8::/48",
        "2001:db8::1-2001:db8::9",
    ])
    def test_accepts_windows_forms(self, entry):
        assert validate_entry(entry) == entry

    @pytest.mark.parametrize("entry", ["", "bogus", "203.0.113.1'; calc", "300.1.1.1", "203.0.113.1-nope", None])
    def test_rejects_everything_else(self, entry):
        with pytest.raises(ValueError):
            validate_entry(entry)


class TestCovers:
    def test_containment(self):
        entries = ["198.51.100.1", "203.0.113.0/255.255.255.0", "192.0.2.10-192.0.2.11"]
        assert covers(entries, "203.0.113.77")
        assert covers(entries, "192.0.2.11")
        assert covers(entries, "198.51.100.1")
        assert not covers(entries, "198.51.100.2")
        assert not covers(["LocalSubnet"], "198.51.100.2")


class TestSubtract:
    def test_plain_hosts(self):
        remaining, removed = subtract(["198.51.100.1", "198.51.100.2"], ["198.51.100.1"])
        assert remaining == ["198.51.100.2"]
        assert removed == ["198.51.100.1"]

    def test_range_split_around_host(self):
        remaining, removed = subtract(["192.0.2.10-192.0.2.12"], ["192.0.2.11"])
        assert remaining == ["192.0.2.10", "192.0.2.12"]
        assert removed == ["192.0.2.11"]

    def test_subnet_split(self):
        remaining, _ = subtract(["203.0.113.0/255.255.255.0"], ["203.0.113.0", "203.0.113.100"])
        assert remaining == ["203.0.113.1-203.0.113.99", "203.0.113.101-203.0.113.255"]

    def test_untouched_entries_verbatim(self):
        entries = ["LocalSubnet", "203.0.113.0/255.255.255.0"]
        assert subtract(entries, ["198.51.100.9"]) == (entries, [])
