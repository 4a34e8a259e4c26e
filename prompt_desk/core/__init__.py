"""
Core modules for Prompt Desk.

This package contains templating, response extraction, token and cost
estimation, and the request orchestrator.
"""
