"""
Trackpad Relay - Use your phone as a trackpad for your desktop

Accepts many concurrent phone connections on the local network and
relays their gestures to a single virtual pointer/keyboard on the host.

Features:
- Pointer, click, scroll, drag, swipe and arrow keys via xdotool
- Clipboard sharing between all connected clients (and the host)
- Short-lived file exchange with automatic expiry

Usage:
    trackpad-relay start   # Start the server
    trackpad-relay stop    # Stop the server
    trackpad-relay status  # Check server status
    trackpad-relay ip      # Show local IP address
"""

__version__ = "1.0.0"
__author__ = "Trackpad Relay"
