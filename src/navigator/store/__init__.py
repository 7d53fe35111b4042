"""Resource stores: the protocol, an in-memory backend and a Kubernetes backend."""
