"""Dashboard server - query cache, pollers, HTTP routes and rendering."""
