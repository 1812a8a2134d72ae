"""
tablesync: create and update pf tables from LDAP groups.

Packages:
  - `directory`: LDAP connect, paged search, recursive group expansion
  - `resolve`: DNS resolution and address lists
  - `table`: reconciliation, table files and pfctl
"""

__version__ = "1.0.0"
