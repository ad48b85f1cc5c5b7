"""streamvault - upload, archive, transcode and stream user videos."""

__version__ = "1.0.0"
