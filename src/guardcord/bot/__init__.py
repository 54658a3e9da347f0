"""
Discord integration layer for Guardcord.

The ``cogs`` package holds the event listeners that turn gateway events into
observations for the protection core.
"""
