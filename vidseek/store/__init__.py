from .vector_index import VectorIndex
from .video_store import VideoStore

__all__ = [
    'VectorIndex',
    'VideoStore',
]
