"""
Streaming client for a multi-agent research backend.
"""
