"""
Exception types shared by the rectifier, the AI client and the batch scheduler.
"""


class CatalogError(Exception):
    """Base class for all vinyl_catalog errors."""


# ---- Perspective rectifier ----

class RectifierError(CatalogError):
    pass

class GeometryError(RectifierError):
    """Corner points produce a singular homography. Re-pick the corners."""

class EmptyOutputError(RectifierError):
    """The warp wrote too few pixels to be a usable image."""

class SourceAccessError(RectifierError):
    """Source pixel data could not be read (download failed, unsupported or corrupt file)."""


# ---- AI capability ----

class AnalysisError(CatalogError):
    pass

class RateLimited(AnalysisError):
    """Provider quota or rate limit hit (HTTP 429)."""

class InvalidKey(AnalysisError):
    """Missing, malformed or rejected API key."""

class AnalysisTimeout(AnalysisError):
    """Analysis did not finish within the allowed time."""

class MalformedResponse(AnalysisError):
    """Provider answered, but not with usable JSON metadata."""
