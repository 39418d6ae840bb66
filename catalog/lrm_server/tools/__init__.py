"""
Command line tools for the LRM catalog.

- registry_cli: Export, validate and render the type registry
"""
