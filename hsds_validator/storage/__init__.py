"""
Per-request storage: uploaded archives and their expanded workspaces
"""

from .workspace import ArchiveIntake, Workspace

__all__ = ['ArchiveIntake', 'Workspace']
