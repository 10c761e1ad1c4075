"""Front-ends that drive the engine (currently: interactive console)."""
