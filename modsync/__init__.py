"""
modsync - Minecraft mod version resolution and file-state synchronization
"""

__version__ = "1.0.0"
