"""
Email tracking feature package.

Infers reading time per Gmail message from the history feed and produces
draft time entries. Domain models, repository, services and errors live
side by side so the whole flow can be followed in one folder.
"""
