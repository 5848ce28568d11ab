"""
Desktop notifications and a systray menu for upcoming Google Calendar events.
"""

__version__ = "0.1.0"
