"""animegate - catalog scrapers, stream extraction and an HLS delivery proxy."""

__version__ = "0.3.0"
