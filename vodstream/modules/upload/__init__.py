"""Chunked upload module.

Collects out-of-order chunks per session and reassembles the source file
once every chunk has arrived.
"""
