from .storage_provider import LocalStorageProvider
from .opencv_frame_sampler import OpenCVFrameSampler

__all__ = [
    'LocalStorageProvider',
    'OpenCVFrameSampler',
]
