route = "not a route: lib directories are never loaded"
