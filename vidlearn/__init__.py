"""VidLearn: download study videos and keep them small."""

__version__ = "0.1.0"
