"""Version 1 of the Chryso Forms API."""
