"""Two-way synchronisation between Org-mode files and a CalDAV calendar."""

__version__ = "0.1.0"
