"""Application wiring: factory, lifespan and service container."""
