"""Video processing module.

Connects uploads to the transcoder, the Blob Store and the Metadata Store.
"""
