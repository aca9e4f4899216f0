"""glassist: a GitLab chat assistant with persistent, searchable history."""

__version__ = "0.3.0"
