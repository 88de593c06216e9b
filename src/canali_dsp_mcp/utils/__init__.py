"""Small pure helpers shared by the protocol layer."""
