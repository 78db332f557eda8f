"""HTTP blueprints for the admin JSON API."""
