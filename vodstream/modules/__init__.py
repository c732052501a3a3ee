"""Application modules.

- upload: Chunked upload sessions and reassembly
- transcoding: Quality ladder, ffmpeg wrapper and transcode orchestration
- relay: M3U8 parsing, rewriting and the HLS relay endpoint
- video: Processing pipeline, status records and Celery tasks
"""
