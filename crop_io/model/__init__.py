"""This sub-package contains the data model for crop jobs and their exports."""
