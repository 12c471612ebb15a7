# Export commands module

from .broadsheet import export_broadsheet

__all__ = [
    "export_broadsheet",
]
