"""
AI Jury layer engine.

Runs the four-layer elimination tournament over a competition event's
project pool and produces a per-category ranking.
"""
__version__ = "1.0.0"
