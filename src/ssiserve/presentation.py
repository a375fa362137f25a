"""
=============================================================================
STARTUP PRESENTATION
=============================================================================

What the user sees once a listener is up, on an interactive terminal:

    ┌────────────────────────────────────────────────────┐
    │                                                    │
    │   Serving!                                         │
    │                                                    │
    │   - Local:            http://localhost:5000        │
    │   - On Your Network:  http://192.168.1.20:5000     │
    │                                                    │
    │   This port was picked because 5000 is in use.     │
    │                                                    │
    │   Copied local address to clipboard!               │
    │                                                    │
    └────────────────────────────────────────────────────┘

Without a terminal (or with SERVE_ENV=production) the listener logs a plain
"Accepting connections at ..." line instead; see listener.py.

=============================================================================
"""

import logging
import socket
from typing import List, Optional

import psutil
import pyperclip


logger = logging.getLogger(__name__)


class ClipboardError(Exception):
    """The local address could not be put on the clipboard."""


def get_network_address() -> Optional[str]:
    """
    First non-loopback IPv4 address of an interface that is up, or None.
    """
    try:
        interfaces = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except OSError as e:
        logger.debug(f"Cannot list network interfaces: {e}")
        return None

    for name, addresses in interfaces.items():
        interface = stats.get(name)
        if interface is not None and not interface.isup:
            continue
        for address in addresses:
            if address.family == socket.AF_INET and not address.address.startswith("127."):
                return address.address
    return None


def copy_to_clipboard(text: str) -> None:
    """
    Raises:
        ClipboardError: No clipboard mechanism is available (headless
            session, missing xclip/xsel, ...).
    """
    try:
        pyperclip.copy(text)
    except pyperclip.PyperclipException as e:
        raise ClipboardError(str(e)) from e


def render_banner(
    local_address: str,
    network_address: Optional[str] = None,
    previous_port: Optional[int] = None,
    clipboard_note: Optional[str] = None,
) -> str:
    """Box the startup message for the terminal."""
    lines: List[str] = ["Serving!", ""]

    if network_address:
        lines.append(f"- Local:            {local_address}")
        lines.append(f"- On Your Network:  {network_address}")
    else:
        lines.append(f"Local:  {local_address}")

    if previous_port is not None:
        lines += ["", f"This port was picked because {previous_port} is in use."]

    if clipboard_note:
        lines += ["", clipboard_note]

    width = max(len(line) for line in lines) + 6
    body = [f"│   {line.ljust(width - 3)}│" for line in [""] + lines + [""]]
    return "\n".join(["┌" + "─" * width + "┐", *body, "└" + "─" * width + "┘"])
