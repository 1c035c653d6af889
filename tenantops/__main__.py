"""Main entry point when executing tenantops as a package.

This allows running the package using python -m tenantops.
"""

from tenantops.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
