"""Autonomous outreach engine: task scheduling, AI decisions, reply classification and routing."""

__version__ = "0.1.0"
