from __future__ import annotations

from videocore.db.models import ThumbnailType

DEFAULT_AUDIO_RESOLUTION = 480

# (width, height)
THUMBNAIL_SIZES = {
    ThumbnailType.miniature: (280, 157),
    ThumbnailType.preview: (850, 480),
}

VIDEO_CATEGORIES = {
    1: "Music",
    2: "Films",
    3: "Vehicles",
    4: "Art",
    5: "Sports",
    6: "Travels",
    7: "Gaming",
    8: "People",
    9: "Comedy",
    10: "Entertainment",
    11: "News & Politics",
    12: "How To",
    13: "Education",
    14: "Activism",
    15: "Science & Technology",
    16: "Animals",
    17: "Kids",
    18: "Food",
}

VIDEO_LICENCES = {
    1: "Attribution",
    2: "Attribution - Share Alike",
    3: "Attribution - No Derivatives",
    4: "Attribution - Non Commercial",
    5: "Attribution - Non Commercial - Share Alike",
    6: "Attribution - Non Commercial - No Derivatives",
    7: "Public Domain Dedication",
}

# Category names reported by remote platforms, mapped onto catalog ids.
REMOTE_CATEGORY_MAP = {
    "Music": 1,
    "Film & Animation": 2,
    "Autos & Vehicles": 3,
    "Sports": 5,
    "Travel & Events": 6,
    "Gaming": 7,
    "People & Blogs": 8,
    "Comedy": 9,
    "Entertainment": 10,
    "News & Politics": 11,
    "Howto & Style": 12,
    "Education": 13,
    "Nonprofits & Activism": 14,
    "Science & Technology": 15,
    "Pets & Animals": 16,
}

REMOTE_LICENCE_MAP = {
    "Creative Commons Attribution license (reuse allowed)": 1,
    "Creative Commons Attribution": 1,
}

__all__ = [
    "DEFAULT_AUDIO_RESOLUTION",
    "THUMBNAIL_SIZES",
    "VIDEO_CATEGORIES",
    "VIDEO_LICENCES",
    "REMOTE_CATEGORY_MAP",
    "REMOTE_LICENCE_MAP",
]
