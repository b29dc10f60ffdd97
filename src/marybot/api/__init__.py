"""HTTP API for the MaryBot worker host."""
