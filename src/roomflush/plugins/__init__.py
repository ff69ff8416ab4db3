"""Bundled collaborators: document stores and enumeration filters."""
