"""HLS playlist relay.

Fetches upstream M3U8 playlists and rewrites their references so nested
playlists are fetched back through the relay.
"""
