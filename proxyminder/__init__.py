"""
Proxyminder - supervisor and usage tracker for a local AI API proxy.

Starts and watches the proxy process, tails its access log, and keeps a
bounded request history with usage statistics for the desktop UI.
"""

__version__ = "0.1.0"
