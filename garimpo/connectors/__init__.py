"""External stores reached over the network."""
