"""Network path observation using OS interface statistics.

Desktop operating systems do not expose a portable path-change callback, so
the observer polls psutil on a QTimer and emits only when the derived
InterfaceState changes. No network requests are made here.
"""

import ipaddress
import logging
import re
import socket
from typing import Callable

import psutil
from PySide6.QtCore import QObject, QTimer, Signal

from onlinenow.models import InterfaceKind, InterfaceState

logger = logging.getLogger(__name__)

# Prefix matches are applied to the lowercased interface name, substring
# matches anywhere in it.
_IGNORED_PREFIXES = (
    "docker", "veth", "virbr", "vmnet", "vboxnet", "br-", "lxc", "lxd",
    "cni", "flannel", "awdl", "llw", "anpi", "bridge", "gif", "stf",
)
_LOOPBACK_NAME = re.compile(r"^lo\d*$|loopback")
_TUNNEL_PREFIXES = ("tun", "tap", "utun", "ppp", "ipsec", "wg", "zt", "gpd")
_TUNNEL_SUBSTRINGS = ("vpn", "tailscale", "wireguard", "nordlynx")
_WIFI_PREFIXES = ("wl", "ath", "ra")
_WIFI_SUBSTRINGS = ("wi-fi", "wifi", "wireless", "airport")
_CELLULAR_PREFIXES = ("wwan", "rmnet", "pdp_ip", "ccmni")
_CELLULAR_SUBSTRINGS = ("cellular", "mobile broadband")
_WIRED_PREFIXES = ("eth", "en", "em")
_WIRED_SUBSTRINGS = ("ethernet", "local area connection")

# Preferred primary path when several interfaces are up at once
_KIND_PRIORITY = (InterfaceKind.WIRED, InterfaceKind.WIFI, InterfaceKind.CELLULAR)


def _matches(name: str, prefixes, substrings=()) -> bool:
    return name.startswith(prefixes) or any(s in name for s in substrings)


def is_tunnel_interface(name: str, flags: str = "") -> bool:
    """Best-effort check whether an interface looks like a VPN/tunnel.

    Args:
        name: OS interface name (e.g. "utun3", "wg0", "tun0")
        flags: psutil interface flags string, if available

    Returns:
        True if the name matches a known tunnel family or the interface is
        point-to-point
    """
    lowered = name.lower()
    if "pointopoint" in flags.split(","):
        return True
    return _matches(lowered, _TUNNEL_PREFIXES, _TUNNEL_SUBSTRINGS)


def interface_family(name: str) -> InterfaceKind | None:
    """Classify an interface name by naming convention.

    Returns:
        WIFI, CELLULAR or WIRED for recognized families, UNKNOWN for an
        unrecognized ("other") interface, None for interfaces that never
        carry an internet path (loopback, container bridges)
    """
    lowered = name.lower()
    if _LOOPBACK_NAME.search(lowered) or _matches(lowered, _IGNORED_PREFIXES):
        return None
    if _matches(lowered, _WIFI_PREFIXES, _WIFI_SUBSTRINGS):
        return InterfaceKind.WIFI
    if _matches(lowered, _CELLULAR_PREFIXES, _CELLULAR_SUBSTRINGS):
        return InterfaceKind.CELLULAR
    if _matches(lowered, _WIRED_PREFIXES, _WIRED_SUBSTRINGS):
        return InterfaceKind.WIRED
    return InterfaceKind.UNKNOWN


def _has_routable_address(addresses) -> bool:
    for addr in addresses:
        if addr.family not in (socket.AF_INET, socket.AF_INET6):
            continue
        try:
            ip = ipaddress.ip_address(addr.address.split("%", 1)[0])
        except ValueError:
            continue
        if ip.is_loopback or ip.is_link_local or ip.is_unspecified:
            continue
        return True
    return False


def classify_interfaces(stats: dict, addrs: dict, constrained: bool = False) -> InterfaceState:
    """Derive an InterfaceState from psutil-shaped interface data (pure function).

    Args:
        stats: Mapping of name -> object with ``isup`` (and optional ``flags``),
               as returned by psutil.net_if_stats()
        addrs: Mapping of name -> list of objects with ``family`` and
               ``address``, as returned by psutil.net_if_addrs()
        constrained: Value reported for is_constrained on a connected path

    Returns:
        InterfaceState for the preferred active path
    """
    active = {}
    tunneled = False

    for name, st in stats.items():
        if not st.isup or not _has_routable_address(addrs.get(name, ())):
            continue
        flags = getattr(st, "flags", "") or ""
        if is_tunnel_interface(name, flags):
            tunneled = True
            continue
        kind = interface_family(name)
        if kind is not None:
            active.setdefault(kind, name)

    for kind in _KIND_PRIORITY:
        if kind in active:
            return InterfaceState(
                kind=kind,
                is_expensive=kind is InterfaceKind.CELLULAR,
                is_constrained=constrained,
                is_tunneled=tunneled,
                interface_name=active[kind],
            )

    if InterfaceKind.UNKNOWN in active:
        # Non-standard "other" interface carrying the path
        return InterfaceState(
            kind=InterfaceKind.UNKNOWN,
            is_constrained=constrained,
            is_tunneled=True,
            interface_name=active[InterfaceKind.UNKNOWN],
        )

    if tunneled:
        # A tunnel is up but no physical path was recognized
        return InterfaceState(
            kind=InterfaceKind.UNKNOWN, is_constrained=constrained, is_tunneled=True
        )

    return InterfaceState.disconnected()


def read_interface_state(constrained: bool = False) -> InterfaceState:
    """Read the current interface state from the OS via psutil."""
    return classify_interfaces(psutil.net_if_stats(), psutil.net_if_addrs(), constrained)


class PathObserver(QObject):
    """Emits InterfaceState snapshots whenever the OS network path changes.

    Thread-safe: polling happens on the thread owning the observer (the Qt
    main thread in practice); consumers receive signals there.
    """

    interface_changed = Signal(object)  # InterfaceState
    error = Signal(str)

    def __init__(
        self,
        source: Callable[[], InterfaceState] | None = None,
        interval_ms: int = 2000,
        parent=None,
    ):
        """Initialize path observer.

        Args:
            source: Callable returning the current InterfaceState
                    (default: read_interface_state)
            interval_ms: Polling interval in milliseconds
            parent: Qt parent object
        """
        super().__init__(parent)
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")

        self._source = source if source is not None else read_interface_state
        self._current: InterfaceState | None = None
        self.is_running = False

        self.timer = QTimer(self)
        self.timer.setInterval(interval_ms)
        self.timer.timeout.connect(self.poll)

    @property
    def current_state(self) -> InterfaceState | None:
        """Last emitted snapshot, or None before the first successful read."""
        return self._current

    def start(self):
        """Emit the current state immediately, then watch for changes."""
        if self.is_running:
            return
        self.is_running = True
        self._current = None  # force the first emission
        self.poll()
        self.timer.start()
        logger.info("Path observer started (interval=%dms)", self.timer.interval())

    def stop(self):
        """Stop polling; no further signals are emitted."""
        if not self.is_running:
            return
        self.is_running = False
        self.timer.stop()
        logger.info("Path observer stopped")

    def poll(self):
        """Read the interface state once and emit it if it changed."""
        if not self.is_running:
            return

        try:
            snapshot = self._source()
        except Exception as e:
            logger.warning("Interface read failed: %s", e, exc_info=True)
            # The next good read is reported even if nothing changed
            self._current = None
            self.error.emit(f"Unable to read network interfaces: {e}")
            return

        if snapshot == self._current:
            return

        previous = self._current
        self._current = snapshot
        logger.info(
            "Network path changed: %s -> %s",
            previous.summary if previous else "(initial)",
            snapshot.summary,
        )
        self.interface_changed.emit(snapshot)
