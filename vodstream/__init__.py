"""vodstream: video-on-demand ingest, HLS transcoding and playlist relay.

Modules:
    - core: Configuration, logging, metrics, Redis, storage, Celery setup
    - modules.upload: Chunked upload reassembly
    - modules.transcoding: ABR ladder and HLS encoding
    - modules.relay: HLS playlist relay and rewriting
    - modules.video: Processing pipeline and video status
"""

__version__ = "0.1.0"
