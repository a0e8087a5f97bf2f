"""HTTP layer: application server boundary, middleware chain and listener."""
