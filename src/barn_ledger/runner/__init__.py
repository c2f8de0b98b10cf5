"""
CLI runner module.

Provides commands:
- seed / add-horse / add-person / add-provider: Catalogue and registry
- add-bill / parse: Store documents and run the extraction pipeline
- unmatched / resolve / assign-person: Manual resolution
- approve / delete: Approval with reclassification, cascading deletion
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
