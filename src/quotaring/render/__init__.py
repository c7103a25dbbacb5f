from quotaring.render.animation import AnimationController
from quotaring.render.colors import band_index, color_for, hex_to_rgb
from quotaring.render.icon import IconRenderer, arc_angles, ring_geometry
from quotaring.render.sinks import IconSink, MemoryIconSink, PngDirectorySink

__all__ = [
    "AnimationController",
    "IconRenderer",
    "IconSink",
    "MemoryIconSink",
    "PngDirectorySink",
    "arc_angles",
    "band_index",
    "color_for",
    "hex_to_rgb",
    "ring_geometry",
]
