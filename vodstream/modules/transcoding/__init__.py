"""Transcoding module for ABR HLS encoding.

Selects the applicable rungs of a fixed quality ladder, encodes each with
ffmpeg, and writes a master playlist referencing every rendition.
"""
