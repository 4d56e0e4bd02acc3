"""
Identisnap - location recognition from photos.

Matches RootSIFT descriptors of a query photo against per-location descriptor
indexes and confirms candidate matches with RANSAC homography verification.
"""

__version__ = "0.1.0"
