# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
# FairSlide - Fair-Rotation Photo Slideshow Engine
"""
FairSlide picks the next photo to show from a large nested photo collection,
rotating playlists, folders and pictures fairly by play count, and enriches
each photo with place names from its embedded GPS coordinates in the background.
"""

__version__ = "1.0.0"
__author__ = "FairSlide"
