entity = "not an entity: lib directories are never loaded"
