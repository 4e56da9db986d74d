route = "not a route: test modules are never loaded"
