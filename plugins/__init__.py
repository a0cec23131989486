"""
plugins/ - Plugin Metadata
==========================
Static descriptions of the plugins this bot ships. At startup each one is
mirrored into the `plugins` table, where its config can be changed at runtime.
"""
