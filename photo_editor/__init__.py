"""Tiered bitmap loading for the photo editor.

The public entry point is :class:`photo_editor.image_engine.ImageLoader`.
"""
