"""
Tests for chat-commander.

Includes:
- helpers.py: fake oracle and transport, config and intent builders
- one test module per component, plus end-to-end commander scenarios
"""
