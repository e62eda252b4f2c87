from .entities import (
    ENTITY_KINDS,
    EntityLookup,
    EntityResolver,
    ResolvedEntity,
    missing_entity,
)
from .images import (
    IMAGE_STRATEGIES,
    Compressor,
    Failed,
    ImageDownloader,
    ImageFetchError,
    ImagePipeline,
    ImageRef,
    ImageResult,
    ImageSrcResolver,
    InlineData,
    PassthroughURL,
    PillowCompressor,
)

__all__ = [
    "ENTITY_KINDS",
    "IMAGE_STRATEGIES",
    "Compressor",
    "EntityLookup",
    "EntityResolver",
    "Failed",
    "ImageDownloader",
    "ImageFetchError",
    "ImagePipeline",
    "ImageRef",
    "ImageResult",
    "ImageSrcResolver",
    "InlineData",
    "PassthroughURL",
    "PillowCompressor",
    "ResolvedEntity",
    "missing_entity",
]
