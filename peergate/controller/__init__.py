"""Request handlers that expose a peer's operations over HTTP."""