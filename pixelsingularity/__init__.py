"""Pixel Singularity game engine and Flask backend."""
__version__ = '0.1.0'
