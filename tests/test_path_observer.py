"""Tests for interface classification and PathObserver."""

import socket
from collections import namedtuple
from unittest import mock

import pytest
from PySide6.QtCore import QCoreApplication

from onlinenow.models import InterfaceKind, InterfaceState
from onlinenow.path_observer import (
    PathObserver,
    classify_interfaces,
    interface_family,
    is_tunnel_interface,
    read_interface_state,
)

# psutil-shaped records
Stats = namedtuple("Stats", ["isup", "flags"])
Addr = namedtuple("Addr", ["family", "address"])


def ipv4(address):
    return [Addr(socket.AF_INET, address)]


@pytest.fixture(scope="module")
def qapp():
    """Create QCoreApplication instance for tests."""
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


class TestInterfaceNaming:
    """Test name-based classification heuristics."""

    def test_wifi_names(self):
        for name in ("wlan0", "wlp3s0", "Wi-Fi", "Wireless Network Connection"):
            assert interface_family(name) is InterfaceKind.WIFI

    def test_wired_names(self):
        for name in ("eth0", "enp0s31f6", "en0", "Ethernet 2", "Local Area Connection"):
            assert interface_family(name) is InterfaceKind.WIRED

    def test_macos_en0_reads_as_wired(self):
        """en0 is usually Wi-Fi on macOS laptops but cannot be told apart by name."""
        assert interface_family("en0") is InterfaceKind.WIRED
        assert "en0" in InterfaceState.__doc__

    def test_cellular_names(self):
        for name in ("wwan0", "rmnet_data0", "pdp_ip0"):
            assert interface_family(name) is InterfaceKind.CELLULAR

    def test_ignored_names(self):
        for name in ("lo", "lo0", "Loopback Pseudo-Interface 1", "docker0", "veth12ab", "virbr0", "br-5f3c"):
            assert interface_family(name) is None

    def test_unrecognized_name_is_other(self):
        assert interface_family("foo7") is InterfaceKind.UNKNOWN

    def test_tunnel_names(self):
        for name in ("tun0", "utun3", "wg0", "ppp0", "tailscale0", "ProtonVPN", "zt7nnig26"):
            assert is_tunnel_interface(name)
        assert not is_tunnel_interface("eth0")

    def test_pointopoint_flag_marks_tunnel(self):
        assert is_tunnel_interface("foo0", "up,pointopoint,running")


class TestClassifyInterfaces:
    """Test InterfaceState derivation from psutil-shaped data."""

    def test_no_active_interfaces_is_disconnected(self):
        stats = {"lo": Stats(True, "up,loopback"), "eth0": Stats(False, "")}
        addrs = {"lo": ipv4("127.0.0.1"), "eth0": ipv4("192.168.1.5")}

        assert classify_interfaces(stats, addrs) == InterfaceState.disconnected()

    def test_link_local_only_is_not_active(self):
        stats = {"eth0": Stats(True, "up")}
        addrs = {"eth0": ipv4("169.254.10.2") + [Addr(socket.AF_INET6, "fe80::1%eth0")]}

        assert not classify_interfaces(stats, addrs).is_connected

    def test_wifi(self):
        stats = {"lo": Stats(True, "up"), "wlan0": Stats(True, "up,broadcast")}
        addrs = {"lo": ipv4("127.0.0.1"), "wlan0": ipv4("10.0.0.7")}

        state = classify_interfaces(stats, addrs)
        assert state.kind is InterfaceKind.WIFI
        assert state.interface_name == "wlan0"
        assert not state.is_tunneled
        assert not state.is_expensive

    def test_wired_preferred_over_wifi(self):
        stats = {"wlan0": Stats(True, "up"), "eth0": Stats(True, "up")}
        addrs = {"wlan0": ipv4("10.0.0.7"), "eth0": ipv4("10.0.0.8")}

        assert classify_interfaces(stats, addrs).kind is InterfaceKind.WIRED

    def test_cellular_is_expensive(self):
        stats = {"wwan0": Stats(True, "up")}
        addrs = {"wwan0": ipv4("100.64.3.2")}

        state = classify_interfaces(stats, addrs)
        assert state.kind is InterfaceKind.CELLULAR
        assert state.is_expensive

    def test_tunnel_alongside_physical_path(self):
        stats = {"wlan0": Stats(True, "up"), "wg0": Stats(True, "up,pointopoint")}
        addrs = {"wlan0": ipv4("10.0.0.7"), "wg0": ipv4("10.8.0.2")}

        state = classify_interfaces(stats, addrs)
        assert state.kind is InterfaceKind.WIFI
        assert state.is_tunneled

    def test_other_interface_counts_as_tunneled(self):
        stats = {"foo7": Stats(True, "up")}
        addrs = {"foo7": [Addr(socket.AF_INET6, "2001:db8::5")]}

        state = classify_interfaces(stats, addrs)
        assert state.kind is InterfaceKind.UNKNOWN
        assert state.is_tunneled

    def test_docker_bridge_ignored(self):
        stats = {"docker0": Stats(True, "up")}
        addrs = {"docker0": ipv4("172.17.0.1")}

        assert not classify_interfaces(stats, addrs).is_connected

    def test_constrained_override(self):
        stats = {"eth0": Stats(True, "up")}
        addrs = {"eth0": ipv4("192.168.1.5")}

        assert classify_interfaces(stats, addrs, constrained=True).is_constrained

    def test_read_interface_state_uses_psutil(self):
        """read_interface_state() combines net_if_stats and net_if_addrs."""
        with mock.patch("onlinenow.path_observer.psutil") as psutil_mock:
            psutil_mock.net_if_stats.return_value = {"eth0": Stats(True, "up")}
            psutil_mock.net_if_addrs.return_value = {"eth0": ipv4("192.168.1.5")}

            state = read_interface_state()

        assert state.kind is InterfaceKind.WIRED


class FakeSource:
    """Interface source returning a scripted sequence of states."""

    def __init__(self, *states):
        self.states = list(states)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        item = self.states[min(self.calls, len(self.states)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


WIFI = InterfaceState(InterfaceKind.WIFI, interface_name="wlan0")
WIRED = InterfaceState(InterfaceKind.WIRED, interface_name="eth0")
DOWN = InterfaceState.disconnected()


class TestPathObserver:
    """Test change detection and lifecycle of PathObserver."""

    def test_start_emits_current_state(self, qapp):
        """start() emits immediately even before any change."""
        observer = PathObserver(source=FakeSource(WIFI), interval_ms=1000)
        emitted = []
        observer.interface_changed.connect(emitted.append)

        observer.start()
        observer.stop()

        assert emitted == [WIFI]
        assert observer.current_state == WIFI

    def test_emits_only_on_change(self, qapp):
        observer = PathObserver(source=FakeSource(WIFI, WIFI, WIRED, WIRED, DOWN), interval_ms=1000)
        emitted = []
        observer.interface_changed.connect(emitted.append)

        observer.start()
        for _ in range(4):
            observer.poll()
        observer.stop()

        assert emitted == [WIFI, WIRED, DOWN]

    def test_no_emission_after_stop(self, qapp):
        source = FakeSource(WIFI, WIRED)
        observer = PathObserver(source=source, interval_ms=1000)
        emitted = []
        observer.interface_changed.connect(emitted.append)

        observer.start()
        observer.stop()
        observer.poll()

        assert emitted == [WIFI]
        assert source.calls == 1

    def test_source_error_emits_error_and_forgets_snapshot(self, qapp):
        observer = PathObserver(source=FakeSource(WIFI, OSError("permission denied")), interval_ms=1000)
        errors = []
        observer.error.connect(errors.append)

        observer.start()
        observer.poll()
        observer.stop()

        assert len(errors) == 1
        assert "permission denied" in errors[0]
        assert observer.current_state is None

    def test_good_read_after_error_is_reported_again(self, qapp):
        """An unchanged state is re-emitted once reads recover."""
        observer = PathObserver(source=FakeSource(DOWN, OSError("psutil hiccup"), DOWN, DOWN), interval_ms=1000)
        emitted = []
        observer.interface_changed.connect(emitted.append)

        observer.start()
        for _ in range(3):
            observer.poll()
        observer.stop()

        assert emitted == [DOWN, DOWN]
        assert observer.current_state == DOWN

    def test_restart_emits_again(self, qapp):
        observer = PathObserver(source=FakeSource(WIFI), interval_ms=1000)
        emitted = []
        observer.interface_changed.connect(emitted.append)

        observer.start()
        observer.stop()
        observer.start()
        observer.stop()

        assert emitted == [WIFI, WIFI]

    def test_invalid_interval(self, qapp):
        with pytest.raises(ValueError):
            PathObserver(source=FakeSource(WIFI), interval_ms=0)
