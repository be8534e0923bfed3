"""habitquest: gamified habit tracking with XP stakes and AI Sage coaching"""

__version__ = "1.0.0"
