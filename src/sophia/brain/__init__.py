"""Dialogue orchestration core.

Entry point: `sophia.brain.engine.process_turn`.
"""
