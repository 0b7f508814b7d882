"""This sub-package contains I/O-related modules: inspection, export and the CLI."""

# All I/O modules are lazy-loaded - they're imported when accessed
# This avoids circular import issues and improves performance
