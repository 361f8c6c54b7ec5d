"""Certificate store: filesystem scan, sidecar metadata, renewal and archive."""
