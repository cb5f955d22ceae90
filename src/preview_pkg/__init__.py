"""
preview-pkg: publish workspace packages to a content-addressed preview registry.

The client pipeline lives in `preview_pkg.publisher` and the registry service in
`preview_pkg.registry`; `coordinates` and `checksum` are shared by both sides.
"""

__all__: list[str] = []
