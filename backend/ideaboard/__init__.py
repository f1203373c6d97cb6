"""
IdeaBoard canvas sync package.

Keeps the items of an open canvas (notes, images, links, todos) in memory,
applies pointer-driven edits optimistically and persists them to the item
store through a debounced, batched, retrying auto-save:

1. ``services.canvas_state`` - the engine (working set, dirty tracking, selection, auto-save)
2. ``services.item_gateway`` - async REST gateway to the ``board_items`` table
3. ``services.entity_mapper`` - item <-> wire record conversion
4. ``services.connection_state`` - online / unsaved-changes flags for status banners
"""

__version__ = "0.1.0"
