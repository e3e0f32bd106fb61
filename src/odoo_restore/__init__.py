"""
Odoo Restore - Rehome an Odoo database and filestore from a backup archive.

Restores a backup zip (dump.sql + filestore/) under a fresh PostgreSQL
role, database name and password, decoupled from the instance that
produced it.
"""

__version__ = "1.0.0"
__author__ = "Server Management Team"
