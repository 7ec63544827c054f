"""Request-scoped helpers shared by the route blueprints."""
