"""
gvm-manager

Access control, schema migration and SQL execution for a vulnerability
management daemon's database.
"""

__version__ = "0.1.0"
