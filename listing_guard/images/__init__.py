from listing_guard.images.fetcher import (
    FetchedImage,
    ImageFetcher,
    ImageFetchError,
    is_transient_fetch_error,
    normalize_image_urls,
)

__all__ = [
    "FetchedImage",
    "ImageFetcher",
    "ImageFetchError",
    "is_transient_fetch_error",
    "normalize_image_urls",
]
