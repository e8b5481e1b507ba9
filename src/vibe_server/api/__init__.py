"""HTTP and WebSocket transport for rooms."""
