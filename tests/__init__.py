"""
Schema registry change feed test suite.

This package contains:
- unit/: Component tests against temporary SQLite registries
- integration/: Facade, hierarchy and CLI flows end to end
"""
