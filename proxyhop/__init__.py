"""
proxyhop - HTTPS requests routed through forward proxies, as a workflow node.
"""

__version__ = "0.1.0"
