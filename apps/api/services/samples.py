"""Static sample artifacts for free mode and demo fallbacks."""

from __future__ import annotations

import random
from typing import Dict, List

DEMO_FALLBACK_VIDEO = "https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/BigBuckBunny.mp4"

FREE_VIDEO_SAMPLES: Dict[str, Dict[str, List[str]]] = {
    "cinematic": {
        "9:16": [
            "https://sample-videos.com/zip/10/mp4/SampleVideo_360x640_1mb.mp4",
            "https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/BigBuckBunny.mp4",
        ],
        "16:9": [
            "https://sample-videos.com/zip/10/mp4/SampleVideo_640x360_1mb.mp4",
            "https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/ElephantsDream.mp4",
        ],
    },
    "dance": {
        "9:16": ["https://sample-videos.com/zip/10/mp4/SampleVideo_360x640_2mb.mp4"],
        "16:9": ["https://sample-videos.com/zip/10/mp4/SampleVideo_640x360_2mb.mp4"],
    },
    "default": {
        "9:16": ["https://sample-videos.com/zip/10/mp4/SampleVideo_360x640_1mb.mp4"],
        "16:9": ["https://sample-videos.com/zip/10/mp4/SampleVideo_640x360_1mb.mp4"],
    },
}

_UNSPLASH = "https://images.unsplash.com/{photo}?w={w}&h={h}&fit=crop&crop=center"


def _unsplash(photo: str, size: str) -> str:
    width, height = size.split("x", 1)
    return _UNSPLASH.format(photo=photo, w=width, h=height)


_IMAGE_PHOTOS: Dict[str, Dict[str, List[str]]] = {
    "photorealistic": {
        "1024x1024": [
            "photo-1506905925346-21bda4d32df4",
            "photo-1518837695005-2083093ee35b",
            "photo-1441974231531-c6227db76b6e",
            "photo-1469474968028-56623f02e42e",
            "photo-1520637836862-4d197d17c50a",
        ],
        "1024x1792": [
            "photo-1518837695005-2083093ee35b",
            "photo-1441974231531-c6227db76b6e",
            "photo-1506905925346-21bda4d32df4",
        ],
        "1792x1024": [
            "photo-1506905925346-21bda4d32df4",
            "photo-1441974231531-c6227db76b6e",
            "photo-1469474968028-56623f02e42e",
        ],
    },
    "digital-art": {
        "1024x1024": [
            "photo-1558618666-fcd25c85cd64",
            "photo-1534796636912-3b95b3ab5986",
            "photo-1518837695005-2083093ee35b",
        ],
        "1024x1792": ["photo-1558618666-fcd25c85cd64", "photo-1534796636912-3b95b3ab5986"],
        "1792x1024": ["photo-1558618666-fcd25c85cd64", "photo-1534796636912-3b95b3ab5986"],
    },
    "anime": {
        "1024x1024": ["photo-1578662996442-48f60103fc96", "photo-1534796636912-3b95b3ab5986"],
        "1024x1792": ["photo-1578662996442-48f60103fc96"],
        "1792x1024": ["photo-1578662996442-48f60103fc96"],
    },
}

SAMPLE_IMAGES: Dict[str, Dict[str, List[str]]] = {
    style: {size: [_unsplash(photo, size) for photo in photos] for size, photos in sizes.items()}
    for style, sizes in _IMAGE_PHOTOS.items()
}


def pick_sample_video(style: str, aspect_ratio: str) -> str:
    """Uniformly pick a free sample for (style, aspect), falling back to default / 9:16."""
    style_videos = FREE_VIDEO_SAMPLES.get(style or "default") or FREE_VIDEO_SAMPLES["default"]
    aspect_videos = style_videos.get(aspect_ratio or "9:16") or style_videos["9:16"]
    return random.choice(aspect_videos)


def pick_sample_image(style: str, size: str) -> str:
    style_images = SAMPLE_IMAGES.get(style or "photorealistic") or SAMPLE_IMAGES["photorealistic"]
    size_images = style_images.get(size or "1024x1024") or style_images["1024x1024"]
    return random.choice(size_images)


def demo_text(prompt: str, model: str = "") -> str:
    lines = [
        "DEMO MODE: the text provider is unavailable, so this is a placeholder response.",
        "",
        f"Prompt: {prompt.strip()}",
    ]
    if model:
        lines.append(f"Requested model: {model}")
    lines.append("")
    lines.append("Try again later for a generated answer.")
    return "\n".join(lines)
