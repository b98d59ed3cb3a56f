"""Homeroute edge proxy — registry compiler for the home-network dashboard."""

__version__ = "0.3.0"
