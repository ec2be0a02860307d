"""Service layer: business operations invoked by the routers."""
