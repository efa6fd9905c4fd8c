"""Execution core for sheets-rewrite: scheduler, retry executor and error classification."""
