"""
Static precache manifest.

Supplied at build time; the worker never computes what to precache. Paths are
relative to the application's base path, which comes from settings.
"""
from typing import List

# App shell and icons (stored in the static partition). "" is the root document.
STATIC_FILES: List[str] = [
    "",
    "favicon.ico",
    "favicon.svg",
    "favicon-16x16.png",
    "favicon-32x32.png",
    "apple-touch-icon.png",
    "android-chrome-192x192.png",
    "android-chrome-512x512.png",
    "site.webmanifest",
]

# Ambient sounds for the Pomodoro timer (stored in the dynamic partition)
SOUND_FILES: List[str] = [
    "sounds/10-minutes-swedish-summer-evening-19559.mp3",
    "sounds/bushes-medium-heavy-wind-in-dry-vegetation-19537.mp3",
    "sounds/crickets_night_2-19628.mp3",
    "sounds/cricketsandfrogs-19596.mp3",
    "sounds/field-recording-backyard-new-york-19524.mp3",
    "sounds/gentle-rain-on-window-for-sleep-422420.mp3",
    "sounds/light-rain-on-metal-roof-114527.mp3",
    "sounds/rain-and-distant-thunder-60230.mp3",
    "sounds/rain-and-thunder-61426.mp3",
    "sounds/relaxing-rain-387677.mp3",
    "sounds/relaxing-rain-444802.mp3",
    "sounds/rooftop-city-neighbourhood-morning-distant-traffic-residents-activity-19574.mp3",
    "sounds/sea-sound-4-19385.mp3",
    "sounds/small-town-ambiance-60015.mp3",
    "sounds/sweden-springtime-birds-field-recording-190420-19629.mp3",
    "sounds/tranquil-flow-387676.mp3",
    "sounds/tranquil-stream-387678.mp3",
    "sounds/winter-morning-60210.mp3",
]


def _under(base_path: str, files: List[str]) -> List[str]:
    base = base_path.rstrip("/")
    return [f"{base}/{name}" for name in files]


def static_assets(base_path: str) -> List[str]:
    return _under(base_path, STATIC_FILES)


def sound_assets(base_path: str) -> List[str]:
    return _under(base_path, SOUND_FILES)
