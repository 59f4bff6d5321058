"""helixmem command line interface."""
