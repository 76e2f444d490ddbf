"""HTTP API for the mini app and admin tooling."""
