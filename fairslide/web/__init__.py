# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""FairSlide JSON API."""
