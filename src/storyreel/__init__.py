"""
Storyreel - turn a book title into a short narrated, subtitled movie.

A generation-state pipeline for:
- Adapting a book into a story with a handful of scenes
- Rendering a character reference image for visual consistency
- Generating per-scene video clips and bilingual narration with timed subtitles
- Invalidating stale assets when story, scenes or settings are edited
- Compositing the finished scenes into one downloadable movie
"""

__version__ = "0.1.0"
